import subprocess
import threading
from pathlib import Path

import pytest

import ghostscript_job
from ghostscript_job import (
    CompressionPreset, JobRequest, GhostscriptRunner, build_command, derive_output_path,
    find_ghostscript, InvalidInputPath, ExternalToolSpawnFailed, ExternalToolNonZeroExit,
    JobCancelled, DPI_MIN, DPI_MAX,
)


class FakePopen:
    def __init__(self, returncode=0, stdout="", stderr="", hang=False, ignore_terminate=False):
        self.returncode_on_exit = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hang = hang
        self.ignore_terminate = ignore_terminate
        self.cmd = None
        self.returncode = None
        self.terminated = False
        self.killed = False

    def __call__(self, cmd, **kwargs):
        self.cmd = cmd
        self.kwargs = kwargs
        return self

    def communicate(self, timeout=None):
        stopped = self.killed if self.ignore_terminate else self.terminated
        if self.hang and not stopped:
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = -9 if self.killed else (-15 if self.terminated else self.returncode_on_exit)
        return self.stdout, self.stderr

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.killed = True


@pytest.mark.parametrize("preset,token", [
    (CompressionPreset.DEFAULT, "default"),
    (CompressionPreset.SCREEN, "screen"),
    (CompressionPreset.EBOOK, "ebook"),
    (CompressionPreset.PRINTER, "printer"),
    (CompressionPreset.PREPRESS, "prepress"),
])
def test_preset_renders_lowercase_token(preset, token):
    assert str(preset) == token
    assert preset.token == token
    assert f"-dPDFSETTINGS=/{token}" in build_command(JobRequest("in.pdf", "out.pdf", 150, preset))


def test_output_path_sits_next_to_input():
    out = derive_output_path("/docs/report.pdf")
    assert out == Path("/docs/report_compressed.pdf")
    assert out.parent == Path("/docs")


def test_output_path_only_strips_last_extension(tmp_path):
    out = derive_output_path(tmp_path / "scan.2024.PDF")
    assert out.parent == tmp_path
    assert out.name == "scan.2024_compressed.pdf"


def test_relative_output_path():
    assert derive_output_path("report.pdf") == Path("report_compressed.pdf")


@pytest.mark.parametrize("bad", ["", "/", "docs/.."])
def test_output_path_rejects_paths_without_a_file_name(bad):
    with pytest.raises(InvalidInputPath):
        derive_output_path(bad)


def test_report_scenario_arguments():
    request = JobRequest.for_input("/docs/report.pdf", 150, CompressionPreset.SCREEN)
    assert request.output_path == str(Path("/docs/report_compressed.pdf"))
    cmd = build_command(request, "gs")
    assert "-dPDFSETTINGS=/screen" in cmd
    assert "-r150" in cmd
    assert "-dColorImageResolution=150" in cmd


def test_command_shape_is_fixed():
    request = JobRequest("/docs/in.pdf", "/docs/in_compressed.pdf", 90, CompressionPreset.EBOOK)
    assert build_command(request, "gs") == [
        "gs",
        "-dBATCH",
        "-dNOPAUSE",
        "-dCompatibilityLevel=1.4",
        "-dPDFSETTINGS=/ebook",
        "-dCompressFonts=true",
        "-dEmbedAllFonts=true",
        "-dSubsetFonts=true",
        "-dColorImageResolution=90",
        "-dGrayImageResolution=90",
        "-dMonoImageResolution=90",
        "-r90",
        "-sDEVICE=pdfwrite",
        "-sOutputFile=/docs/in_compressed.pdf",
        "/docs/in.pdf",
    ]


@pytest.mark.parametrize("dpi", [DPI_MIN, 70, 150, 220, DPI_MAX])
def test_resolution_arguments_never_diverge(dpi):
    cmd = build_command(JobRequest("a.pdf", "b.pdf", dpi, CompressionPreset.PRINTER))
    resolution_args = [a for a in cmd if "Resolution=" in a or a.startswith("-r")]
    assert len(resolution_args) == 4
    assert {a.split("=")[-1].lstrip("-r") for a in resolution_args} == {str(dpi)}


@pytest.mark.parametrize("dpi", [DPI_MIN - 1, DPI_MAX + 1, 0])
def test_request_rejects_out_of_range_dpi(dpi):
    with pytest.raises(ValueError):
        JobRequest("a.pdf", "b.pdf", dpi, CompressionPreset.SCREEN)


def test_request_is_frozen():
    request = JobRequest("a.pdf", "b.pdf", 150, CompressionPreset.SCREEN)
    with pytest.raises(AttributeError):
        request.dpi = 300


def test_env_override_wins(monkeypatch):
    monkeypatch.setenv("PDF_COMPRESSOR_GS", "/opt/gs/bin/gs")
    assert find_ghostscript() == "/opt/gs/bin/gs"


def test_windows_executable_name(monkeypatch):
    monkeypatch.delenv("PDF_COMPRESSOR_GS", raising=False)
    monkeypatch.setattr(ghostscript_job.sys, "platform", "win32")
    monkeypatch.setattr(ghostscript_job.shutil, "which", lambda name: None)
    assert find_ghostscript() == "gswin64c"


def test_posix_executable_name(monkeypatch):
    monkeypatch.delenv("PDF_COMPRESSOR_GS", raising=False)
    monkeypatch.setattr(ghostscript_job.sys, "platform", "linux")
    assert find_ghostscript() == "gs"


def test_runner_success(monkeypatch):
    fake = FakePopen(stdout="GPL Ghostscript")
    monkeypatch.setattr(ghostscript_job.subprocess, "Popen", fake)
    request = JobRequest("/docs/report.pdf", "/docs/report_compressed.pdf", 150, CompressionPreset.SCREEN)
    result = GhostscriptRunner("gs", poll_interval=0.01).run(request)
    assert result.exit_code == 0
    assert result.request is request
    assert fake.cmd == build_command(request, "gs")


def test_runner_nonzero_exit_is_reported_not_fatal(monkeypatch):
    monkeypatch.setattr(ghostscript_job.subprocess, "Popen",
                        FakePopen(returncode=1, stderr="Error: /undefinedfilename"))
    request = JobRequest("missing.pdf", "missing_compressed.pdf", 150, CompressionPreset.SCREEN)
    with pytest.raises(ExternalToolNonZeroExit) as excinfo:
        GhostscriptRunner("gs", poll_interval=0.01).run(request)
    assert excinfo.value.exit_code == 1
    assert "undefinedfilename" in str(excinfo.value)


def test_runner_spawn_failure(monkeypatch):
    def boom(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])
    monkeypatch.setattr(ghostscript_job.subprocess, "Popen", boom)
    request = JobRequest("a.pdf", "a_compressed.pdf", 150, CompressionPreset.SCREEN)
    with pytest.raises(ExternalToolSpawnFailed):
        GhostscriptRunner("no-such-gs", poll_interval=0.01).run(request)


def test_runner_cancel_terminates_child(monkeypatch):
    fake = FakePopen(hang=True)
    monkeypatch.setattr(ghostscript_job.subprocess, "Popen", fake)
    cancel = threading.Event()
    cancel.set()
    request = JobRequest("a.pdf", "a_compressed.pdf", 150, CompressionPreset.SCREEN)
    with pytest.raises(JobCancelled):
        GhostscriptRunner("gs", poll_interval=0.01).run(request, cancel)
    assert fake.terminated


def test_runner_kills_child_that_ignores_terminate(monkeypatch):
    fake = FakePopen(hang=True, ignore_terminate=True)
    monkeypatch.setattr(ghostscript_job.subprocess, "Popen", fake)
    cancel = threading.Event()
    cancel.set()
    request = JobRequest("a.pdf", "a_compressed.pdf", 150, CompressionPreset.SCREEN)
    with pytest.raises(JobCancelled):
        GhostscriptRunner("gs", poll_interval=0.01, kill_timeout=0.01).run(request, cancel)
    assert fake.terminated
    assert fake.killed


def test_percent_in_output_name_is_escaped_for_gs():
    request = JobRequest.for_input("/docs/50%off.pdf", 150, CompressionPreset.SCREEN)
    assert request.output_path == str(Path("/docs/50%off_compressed.pdf"))
    cmd = build_command(request, "gs")
    assert f"-sOutputFile={Path('/docs/50%%off_compressed.pdf')}" in cmd
    assert cmd[-1] == request.input_path
