"""
Lifecycle of the single compression job shown by the window.

The UI thread starts jobs and resets after a new file pick; the worker thread
finishes them. Both go through one lock and publish one immutable snapshot, so
a reader never sees `processing` and `complete` out of step.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ghostscript_job import JobRequest


class JobPhase(Enum):
    IDLE = auto()       # nothing run yet, or result dismissed by a new pick
    RUNNING = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()


TERMINAL_PHASES = (JobPhase.SUCCEEDED, JobPhase.FAILED, JobPhase.CANCELLED)


@dataclass(frozen=True)
class JobSnapshot:
    phase: JobPhase = JobPhase.IDLE
    request: Optional[JobRequest] = None
    message: str = ""
    exit_code: Optional[int] = None

    @property
    def processing(self) -> bool:
        return self.phase is JobPhase.RUNNING

    @property
    def complete(self) -> bool:
        return self.phase is JobPhase.SUCCEEDED

    @property
    def can_start(self) -> bool:
        return not self.processing


class JobState:
    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot = JobSnapshot()

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def processing(self) -> bool:
        return self.snapshot().processing

    @property
    def complete(self) -> bool:
        return self.snapshot().complete

    def try_start(self, request: JobRequest) -> bool:
        """Move to RUNNING; False if a job is already running."""
        with self._lock:
            if self._snapshot.processing:
                logging.info("Compression already running; ignoring trigger")
                return False
            self._snapshot = JobSnapshot(JobPhase.RUNNING, request, "Compressing...")
            return True

    def finish(self, phase: JobPhase, message: str = "", exit_code: Optional[int] = None) -> JobSnapshot:
        if phase not in TERMINAL_PHASES:
            raise ValueError(f"{phase} is not a terminal phase")
        with self._lock:
            if not self._snapshot.processing:
                raise RuntimeError(f"Cannot finish a job in phase {self._snapshot.phase.name}")
            self._snapshot = JobSnapshot(phase, self._snapshot.request, message, exit_code)
            snap = self._snapshot
        logging.info(f"Job {phase.name.lower()}: {message}")
        return snap

    def reset(self) -> bool:
        """Back to IDLE after a new file pick. Refused while a job runs."""
        with self._lock:
            if self._snapshot.processing:
                return False
            self._snapshot = JobSnapshot()
            return True
