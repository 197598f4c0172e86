import os
import threading

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import fitz
import pytest

from ghostscript_job import JobResult


class FakeRunner:
    """Stands in for GhostscriptRunner; records requests instead of spawning gs."""
    executable = "gs-not-installed"

    def __init__(self, error=None, output=b"%PDF-1.4 small", block=False, partial=False):
        self.error = error
        self.output = output
        self.block = block
        self.partial = partial
        self.calls = []
        self.started = threading.Event()

    def _write_output(self, request):
        if self.output is not None:
            with open(request.output_path, "wb") as f:
                f.write(self.output)

    def run(self, request, cancel_event=None):
        self.calls.append(request)
        self.started.set()
        if self.partial:
            self._write_output(request)
        if self.block:
            from ghostscript_job import JobCancelled
            cancel_event.wait(5)
            raise JobCancelled("Operation cancelled by user")
        if self.error is not None:
            raise self.error
        self._write_output(request)
        return JobResult(request, 0, 0.01)


@pytest.fixture
def make_runner():
    return FakeRunner


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture(scope="session")
def qapp():
    from PyQt6.QtWidgets import QApplication
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def sample_pdf(tmp_path):
    path = tmp_path / "report.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "quarterly report")
    doc.save(str(path))
    doc.close()
    return path
