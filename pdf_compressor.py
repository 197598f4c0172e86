#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PDF compressor – a small Qt front-end over Ghostscript's pdfwrite device.

- Pick a PDF (dialog or drag & drop), choose a -dPDFSETTINGS preset and an
  image DPI, and the compressed copy is written next to it as
  <name>_compressed.pdf.
- Ghostscript runs on a QThread; the window only reads the shared JobState
  snapshot, so the Compress button stays disabled while a job is in flight.
- Failures (missing gs, non-zero exit, no disk space) land in the FAILED
  state with a message instead of crashing the app. Cancel and closing the
  window stop the running gs process.
"""

import sys
import os
import shutil
import logging
import threading
import subprocess

import psutil
import fitz  # PyMuPDF

from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QLabel, QPushButton,
    QFileDialog, QProgressBar, QSlider, QMessageBox, QGroupBox, QRadioButton, QButtonGroup
)
from PyQt6.QtCore import Qt, QThread, QTimer, QStandardPaths, pyqtSignal
from PyQt6.QtGui import QDragEnterEvent, QDropEvent, QFont

from ghostscript_job import (
    DPI_MIN, DPI_MAX, DPI_STEP, DEFAULT_DPI, DEFAULT_PRESET,
    CompressionPreset, JobRequest, GhostscriptRunner, clamp_dpi, derive_output_path,
    CompressionError, InvalidInputPath, ExternalToolNonZeroExit, JobCancelled,
    InsufficientDiskSpace, EnvironmentUnavailable,
)
from job_state import JobState, JobPhase, JobSnapshot


# ------------------------- Small helpers -------------------------

def file_size_bytes(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0

def available_gb(path: str) -> float:
    try:
        return shutil.disk_usage(path).free / (1024**3)
    except OSError:
        return 0.0

def _subprocess_rc(cmd, timeout=30):
    try:
        r = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        return r.returncode
    except (OSError, subprocess.SubprocessError):
        return 1


def _lookup_documents_dir() -> str:
    loc = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.DocumentsLocation)
    if not loc or not os.path.isdir(loc):
        raise EnvironmentUnavailable("No Documents directory available")
    return loc

def documents_directory() -> str:
    """Start folder for the file dialog: Documents, else home, else cwd."""
    try:
        return _lookup_documents_dir()
    except EnvironmentUnavailable as e:
        logging.warning(f"{e}; falling back to the home directory")
    home = os.path.expanduser("~")
    return home if os.path.isdir(home) else os.getcwd()


# ------------------------- Dependencies -------------------------

class DependencyChecker:
    @staticmethod
    def check_ghostscript(executable: str = "gs"):
        return _subprocess_rc([executable, '-v']) == 0

    @staticmethod
    def check_available_memory():
        try:
            return psutil.virtual_memory().available / (1024**3)
        except Exception:
            return 0

    @staticmethod
    def get_free_disk_space(path):
        return available_gb(path)


def get_pdf_info(pdf_path):
    info = {
        'pages': 0,
        'size_mb': file_size_bytes(pdf_path) / (1024**2),
        'is_encrypted': False,
    }
    try:
        with fitz.open(pdf_path) as doc:
            info['is_encrypted'] = bool(doc.needs_pass)
            info['pages'] = doc.page_count
    except Exception as e:
        logging.warning(f"Could not read PDF info for {pdf_path}: {e}")
    return info


# ------------------------- Worker -------------------------

class CompressionWorker(QThread):
    status_update = pyqtSignal(str)
    job_finished = pyqtSignal(object)

    def __init__(self, request: JobRequest, job_state: JobState, runner: GhostscriptRunner | None = None):
        super().__init__()
        self.request = request
        self.job_state = job_state
        self.runner = runner or GhostscriptRunner()
        self._cancel_event = threading.Event()

    def cancel(self):
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _check_disk_space(self):
        out_dir = os.path.dirname(self.request.output_path) or os.getcwd()
        est_temp = file_size_bytes(self.request.input_path) / (1024**2) * 2 + 64
        if available_gb(out_dir) * 1024 < est_temp:
            raise InsufficientDiskSpace(f"Insufficient disk space. Need ~{est_temp:.1f} MB free near output directory.")

    def _discard_partial_output(self):
        try:
            os.remove(self.request.output_path)
            logging.info(f"Removed partial output {self.request.output_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning(f"Could not remove partial output {self.request.output_path}: {e}")

    def run(self):
        output_existed = os.path.exists(self.request.output_path)
        try:
            self._check_disk_space()
            self.status_update.emit(
                f"Running Ghostscript: preset={self.request.preset}, DPI={self.request.dpi}"
            )
            result = self.runner.run(self.request, self._cancel_event)
            snap = self.job_state.finish(JobPhase.SUCCEEDED, "Compression complete!", result.exit_code)
        except JobCancelled as e:
            snap = self.job_state.finish(JobPhase.CANCELLED, str(e))
        except ExternalToolNonZeroExit as e:
            snap = self.job_state.finish(JobPhase.FAILED, f"Error: {e}", e.exit_code)
        except CompressionError as e:
            snap = self.job_state.finish(JobPhase.FAILED, f"Error: {e}")
        except Exception as e:
            logging.exception("Compression error")
            snap = self.job_state.finish(JobPhase.FAILED, f"Error: {e}")
        if not snap.complete and not output_existed:
            self._discard_partial_output()
        self.job_finished.emit(snap)


# ------------------------- UI -------------------------

class DropArea(QWidget):
    file_dropped = pyqtSignal(str)
    def __init__(self):
        super().__init__()
        self.setAcceptDrops(True)
        layout = QVBoxLayout()
        label = QLabel("Drag a PDF here")
        label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout.addWidget(label)
        self.label = label
        self.setLayout(layout)
    def dragEnterEvent(self, event: QDragEnterEvent):
        if event.mimeData().hasUrls() and event.mimeData().urls()[0].path().lower().endswith(".pdf"):
            event.acceptProposedAction()
    def dropEvent(self, event: QDropEvent):
        self.file_dropped.emit(event.mimeData().urls()[0].toLocalFile())


class PDFCompressorApp(QMainWindow):
    def __init__(self, runner: GhostscriptRunner | None = None):
        super().__init__()
        self.runner = runner or GhostscriptRunner()
        self.job_state = JobState()
        self.input_file_path = None
        self.output_file_path = None
        self.pdf_info = None
        self.worker = None

        self.setWindowTitle("PDF compressor")
        self.resize(800, 440)

        self._build_ui()
        self._check_dependencies()
        self._show_resources()

        self.memory_timer = QTimer()
        self.memory_timer.timeout.connect(self._show_resources)
        self.memory_timer.start(2000)

        # the job state is polled, the worker signal only shortens the wait
        self.state_timer = QTimer()
        self.state_timer.timeout.connect(self._sync_job_state)
        self.state_timer.start(200)

    def _build_ui(self):
        main = QWidget()
        layout = QVBoxLayout()

        heading = QLabel("PDF compressor")
        font = heading.font()
        font.setPointSize(font.pointSize() + 6)
        font.setBold(True)
        heading.setFont(font)
        layout.addWidget(heading)

        # System status
        sys_group = QGroupBox("System Status")
        sys_h = QHBoxLayout()
        self.dependency_status = QLabel("Checking dependencies...")
        self.memory_status = QLabel("Memory: Checking...")
        self.disk_status = QLabel("Disk: Checking...")
        sys_h.addWidget(self.dependency_status)
        sys_h.addWidget(self.memory_status)
        sys_h.addWidget(self.disk_status)
        sys_group.setLayout(sys_h)
        layout.addWidget(sys_group)

        # Settings
        settings_group = QGroupBox("Compression Settings")
        settings_layout = QVBoxLayout()

        dpi_h = QHBoxLayout()
        dpi_h.addWidget(QLabel("Image DPI:"))
        self.dpi_slider = QSlider(Qt.Orientation.Horizontal)
        self.dpi_slider.setRange(DPI_MIN, DPI_MAX)
        self.dpi_slider.setSingleStep(DPI_STEP)
        self.dpi_slider.setPageStep(DPI_STEP)
        self.dpi_slider.setTickInterval(DPI_STEP * 5)
        self.dpi_slider.setTickPosition(QSlider.TickPosition.TicksBelow)
        self.dpi_slider.setValue(DEFAULT_DPI)
        self.dpi_value_label = QLabel(str(DEFAULT_DPI))
        self.dpi_slider.valueChanged.connect(self._dpi_changed)
        dpi_h.addWidget(self.dpi_slider)
        dpi_h.addWidget(self.dpi_value_label)
        settings_layout.addLayout(dpi_h)

        settings_layout.addWidget(QLabel("Select a mode to compress:"))
        preset_h = QHBoxLayout()
        self.preset_group = QButtonGroup()
        self.preset_buttons = {}
        for preset in CompressionPreset:
            btn = QRadioButton(str(preset))
            btn.setChecked(preset is DEFAULT_PRESET)
            self.preset_group.addButton(btn)
            self.preset_buttons[preset] = btn
            preset_h.addWidget(btn)
        settings_layout.addLayout(preset_h)

        settings_group.setLayout(settings_layout)
        layout.addWidget(settings_group)

        # File
        file_h = QHBoxLayout()
        self.open_button = QPushButton("Open file…")
        self.open_button.clicked.connect(self._open_file_dialog)
        file_h.addWidget(self.open_button)
        self.drop_area = DropArea()
        self.drop_area.file_dropped.connect(self._file_selected)
        file_h.addWidget(self.drop_area)
        layout.addLayout(file_h)

        info_group = QGroupBox("File Information")
        info_v = QVBoxLayout()
        mono = QFont("monospace")
        mono.setStyleHint(QFont.StyleHint.Monospace)
        picked_h = QHBoxLayout()
        picked_h.addWidget(QLabel("Picked file:"))
        self.file_label = QLabel("No file selected")
        self.file_label.setFont(mono)
        picked_h.addWidget(self.file_label, 1)
        info_v.addLayout(picked_h)
        out_h = QHBoxLayout()
        out_h.addWidget(QLabel("Compressed file output:"))
        self.output_label = QLabel("")
        self.output_label.setFont(mono)
        out_h.addWidget(self.output_label, 1)
        info_v.addLayout(out_h)
        self.pdf_info_label = QLabel()
        info_v.addWidget(self.pdf_info_label)
        info_group.setLayout(info_v)
        layout.addWidget(info_group)

        # Buttons
        btn_h = QHBoxLayout()
        self.compress_button = QPushButton("Compress PDF")
        self.compress_button.clicked.connect(self._start_compression)
        self.compress_button.setEnabled(False)
        btn_h.addWidget(self.compress_button)
        self.cancel_button = QPushButton("Cancel")
        self.cancel_button.clicked.connect(self._cancel_compression)
        self.cancel_button.setEnabled(False)
        btn_h.addWidget(self.cancel_button)
        layout.addLayout(btn_h)

        # Progress
        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 0)
        self.progress_bar.setVisible(False)
        layout.addWidget(self.progress_bar)
        self.status_label = QLabel("Ready")
        layout.addWidget(self.status_label)
        self.complete_label = QLabel("Compression complete!")
        self.complete_label.setFont(heading.font())
        self.complete_label.setVisible(False)
        layout.addWidget(self.complete_label)

        layout.addStretch(1)
        main.setLayout(layout)
        self.setCentralWidget(main)

    def _check_dependencies(self):
        gs_ok = DependencyChecker.check_ghostscript(self.runner.executable)
        self.dependency_status.setText(
            f"Ghostscript ({self.runner.executable}): OK" if gs_ok
            else f"Ghostscript ({self.runner.executable}): Missing"
        )
        self.dependency_status.setStyleSheet("color: green;" if gs_ok else "color: orange;")

    def _show_resources(self):
        available_memory_gb = DependencyChecker.check_available_memory()
        self.memory_status.setText(f"Memory: {available_memory_gb:.1f} GB available")
        self.memory_status.setStyleSheet("color: green;" if available_memory_gb > 2 else ("color: orange;" if available_memory_gb > 1 else "color: red;"))
        out_dir = os.path.dirname(self.output_file_path) if self.output_file_path else os.getcwd()
        free_space_gb = DependencyChecker.get_free_disk_space(out_dir)
        self.disk_status.setText(f"Disk: {free_space_gb:.1f} GB free")
        self.disk_status.setStyleSheet("color: green;" if free_space_gb > 5 else ("color: orange;" if free_space_gb > 1 else "color: red;"))

    def _dpi_changed(self, value):
        snapped = clamp_dpi(round(value / DPI_STEP) * DPI_STEP)
        if snapped != value:
            self.dpi_slider.setValue(snapped)
            return
        self.dpi_value_label.setText(str(value))

    def selected_preset(self) -> CompressionPreset:
        for preset, btn in self.preset_buttons.items():
            if btn.isChecked():
                return preset
        return DEFAULT_PRESET

    def _open_file_dialog(self):
        path, _ = QFileDialog.getOpenFileName(self, "Select PDF", documents_directory(), "PDF Files (*.pdf)")
        if path:
            self._file_selected(path)

    def _file_selected(self, file_path):
        try:
            output_path = derive_output_path(file_path)
        except InvalidInputPath as e:
            logging.warning(str(e))
            QMessageBox.warning(self, "Invalid file", str(e))
            return
        if not self.job_state.reset():
            self.status_label.setText("Wait for the running compression to finish.")
            return

        self.input_file_path = str(file_path)
        self.output_file_path = str(output_path)
        self.file_label.setText(self.input_file_path)
        self.output_label.setText(self.output_file_path)
        logging.info(f"Picked {self.input_file_path} -> {self.output_file_path}")

        self.pdf_info = get_pdf_info(self.input_file_path)
        info_text = []
        if self.pdf_info['pages'] > 0:
            info_text.append(f"Pages: {self.pdf_info['pages']}")
        info_text.append(f"Size: {self.pdf_info['size_mb']:.1f} MB")
        if self.pdf_info['is_encrypted']:
            info_text.append("Encrypted (password protected, cannot compress)")
        self.pdf_info_label.setText(" | ".join(info_text))
        self.status_label.setText("Ready")
        self._sync_job_state()

    def _can_compress(self) -> bool:
        if not self.input_file_path:
            return False
        return not (self.pdf_info and self.pdf_info.get('is_encrypted', False))

    def _sync_job_state(self) -> JobSnapshot:
        snap = self.job_state.snapshot()
        self.compress_button.setEnabled(snap.can_start and self._can_compress())
        self.cancel_button.setEnabled(snap.processing and not (self.worker and self.worker.cancelled))
        self.open_button.setEnabled(not snap.processing)
        self.drop_area.setEnabled(not snap.processing)
        self.progress_bar.setVisible(snap.processing)
        self.complete_label.setVisible(snap.complete)
        return snap

    def _start_compression(self):
        if not self.input_file_path:
            QMessageBox.warning(self, "Error", "Please select a PDF file first.")
            return

        request = JobRequest(self.input_file_path, self.output_file_path,
                             clamp_dpi(self.dpi_slider.value()), self.selected_preset())
        if not self.job_state.try_start(request):
            return

        self.status_label.setText("Starting compression...")
        self.worker = CompressionWorker(request, self.job_state, self.runner)
        self.worker.status_update.connect(self._update_status)
        self.worker.job_finished.connect(self._compression_finished)
        self._sync_job_state()
        self.worker.start()

    def _cancel_compression(self):
        if self.worker and self.job_state.processing:
            self.worker.cancel()
            self.status_label.setText("Cancelling...")
            self.cancel_button.setEnabled(False)

    def _update_status(self, message):
        self.status_label.setText(message)

    def _compression_finished(self, snap: JobSnapshot):
        self._sync_job_state()
        self.status_label.setText(snap.message)

        if snap.phase is JobPhase.SUCCEEDED and not os.path.exists(snap.request.output_path):
            QMessageBox.warning(self, "Compression Complete",
                                f"Ghostscript finished but no file was found at:\n{snap.request.output_path}")
        elif snap.phase is JobPhase.SUCCEEDED:
            original_size = file_size_bytes(snap.request.input_path) / (1024**2)
            compressed_size = file_size_bytes(snap.request.output_path) / (1024**2)
            reduction = ((original_size - compressed_size) / max(1e-9, original_size)) * 100
            detailed_message = (f"{snap.message}\n\n"
                                f"Original size: {original_size:.2f} MB\n"
                                f"Compressed size: {compressed_size:.2f} MB\n"
                                f"Size reduction: {reduction:.1f}%")
            QMessageBox.information(self, "Compression Complete", detailed_message)
        elif snap.phase is JobPhase.FAILED:
            QMessageBox.critical(self, "Compression Failed", snap.message)

        if self.worker:
            self.worker.wait()
            self.worker.deleteLater()
            self.worker = None

    def closeEvent(self, event):
        if self.worker and self.worker.isRunning():
            logging.info("Window closing; cancelling running compression")
            self.worker.cancel()
            self.worker.wait()
        event.accept()


# ------------------------- Main -------------------------

def main():
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    app = QApplication(sys.argv)
    window = PDFCompressorApp()
    window.show()
    sys.exit(app.exec())

if __name__ == '__main__':
    main()
