#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ghostscript job: settings, output naming and the external pdfwrite run.

- CompressionPreset maps onto Ghostscript's -dPDFSETTINGS profiles.
- JobRequest is the frozen snapshot handed to the worker thread.
- GhostscriptRunner spawns gs, waits for it (cancellable) and turns every
  failure into a CompressionError instead of taking the app down.
"""

import os
import sys
import time
import shutil
import logging
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


DPI_MIN = 10
DPI_MAX = 300
DPI_STEP = 10
DEFAULT_DPI = 150

COMPATIBILITY_LEVEL = "1.4"
OUTPUT_SUFFIX = "_compressed"

GS_ENV_VAR = "PDF_COMPRESSOR_GS"


# ------------------------- Errors -------------------------

class CompressionError(Exception):
    """Base class for every recoverable failure of a compression job."""


class InvalidInputPath(CompressionError):
    pass


class ExternalToolSpawnFailed(CompressionError):
    pass


class ExternalToolNonZeroExit(CompressionError):
    def __init__(self, exit_code: int, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"Ghostscript exited with code {exit_code}{detail}")


class JobCancelled(CompressionError):
    pass


class InsufficientDiskSpace(CompressionError):
    pass


class EnvironmentUnavailable(CompressionError):
    pass


# ------------------------- Settings -------------------------

class CompressionPreset(Enum):
    DEFAULT = "default"
    SCREEN = "screen"
    EBOOK = "ebook"
    PRINTER = "printer"
    PREPRESS = "prepress"

    @property
    def token(self) -> str:
        return self.value

    def __str__(self):
        return self.value


DEFAULT_PRESET = CompressionPreset.SCREEN


def clamp_dpi(dpi) -> int:
    return max(DPI_MIN, min(DPI_MAX, int(dpi)))


@dataclass(frozen=True)
class JobRequest:
    input_path: str
    output_path: str
    dpi: int = DEFAULT_DPI
    preset: CompressionPreset = DEFAULT_PRESET

    def __post_init__(self):
        if not DPI_MIN <= int(self.dpi) <= DPI_MAX:
            raise ValueError(f"DPI must be between {DPI_MIN} and {DPI_MAX}, got {self.dpi}")
        if not isinstance(self.preset, CompressionPreset):
            raise ValueError(f"Unknown preset: {self.preset!r}")

    @classmethod
    def for_input(cls, input_path, dpi=DEFAULT_DPI, preset=DEFAULT_PRESET) -> "JobRequest":
        return cls(str(input_path), str(derive_output_path(input_path)), int(dpi), preset)


@dataclass(frozen=True)
class JobResult:
    request: JobRequest
    exit_code: int
    elapsed: float
    stdout: str = ""


# ------------------------- Output path -------------------------

def derive_output_path(input_path) -> Path:
    """<parent>/<stem>_compressed.pdf next to the input file."""
    path = Path(input_path)
    if not path.name or path.name in (".", ".."):
        raise InvalidInputPath(f"No file name in {str(input_path)!r}")
    if not path.stem:
        raise InvalidInputPath(f"Cannot derive an output name from {path.name!r}")
    return path.with_name(f"{path.stem}{OUTPUT_SUFFIX}.pdf")


# ------------------------- Command -------------------------

def find_ghostscript() -> str:
    override = os.environ.get(GS_ENV_VAR)
    if override:
        return override
    if sys.platform.startswith("win"):
        for exe in ("gswin64c", "gswin32c", "gs"):
            if shutil.which(exe):
                return exe
        return "gswin64c"
    return "gs"


def escape_output_file(path) -> str:
    # gs expands %d and friends in OutputFile as page-number templates
    return str(path).replace("%", "%%")


def build_command(request: JobRequest, executable: str = "gs") -> list:
    dpi = int(request.dpi)
    return [
        executable,
        "-dBATCH",
        "-dNOPAUSE",
        f"-dCompatibilityLevel={COMPATIBILITY_LEVEL}",
        f"-dPDFSETTINGS=/{request.preset.token}",
        "-dCompressFonts=true",
        "-dEmbedAllFonts=true",
        "-dSubsetFonts=true",
        f"-dColorImageResolution={dpi}",
        f"-dGrayImageResolution={dpi}",
        f"-dMonoImageResolution={dpi}",
        f"-r{dpi}",
        "-sDEVICE=pdfwrite",
        f"-sOutputFile={escape_output_file(request.output_path)}",
        request.input_path,
    ]


# ------------------------- Runner -------------------------

class GhostscriptRunner:
    def __init__(self, executable: str | None = None, poll_interval: float = 0.2,
                 kill_timeout: float = 5.0):
        self.executable = executable or find_ghostscript()
        self.poll_interval = poll_interval
        self.kill_timeout = kill_timeout

    def run(self, request: JobRequest, cancel_event: threading.Event | None = None) -> JobResult:
        cmd = build_command(request, self.executable)
        logging.info(f"Executing command: {subprocess.list2cmdline(cmd)}")
        kwargs = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "text": True,
            "errors": "replace",
        }
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        started = time.monotonic()
        try:
            proc = subprocess.Popen(cmd, **kwargs)
        except OSError as e:
            logging.error(f"Could not launch {self.executable}: {e}")
            raise ExternalToolSpawnFailed(f"Could not launch Ghostscript ({self.executable}): {e}") from e

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    self._stop(proc)
                    raise JobCancelled("Operation cancelled by user")

        elapsed = time.monotonic() - started
        if proc.returncode != 0:
            tail = (stderr or "").strip()[-400:]
            logging.error(f"Ghostscript failed with code {proc.returncode}: {tail}")
            raise ExternalToolNonZeroExit(proc.returncode, tail)

        logging.info(f"Ghostscript finished in {elapsed:.1f}s -> {request.output_path}")
        return JobResult(request, proc.returncode, elapsed, stdout or "")

    def _stop(self, proc):
        logging.info("Cancelling Ghostscript process")
        proc.terminate()
        try:
            proc.communicate(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
