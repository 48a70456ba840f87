"""Data models for the treehash pipeline.

Provides the values that flow between pipeline stages (FileTask,
HashRecord, HashFailure), the process exit codes, and the lifecycle
counters the orchestrator checks once every stage has joined.
"""

import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union


class ExitCode(IntEnum):
    """Process exit codes, one per failure class."""

    SUCCESS = 0
    PATH_NULL = 1
    INVALID_PATH = 2
    FILE_NOT_DIR = 3
    OUTPUT_PATH = 4
    PERMISSION = 5
    NO_CHILDREN = 6
    PIPELINE_ERROR = 7


@dataclass(frozen=True)
class FileTask:
    """A discovered regular file awaiting hashing.

    Attributes:
        path: File path (root-relative when the root was given relative)
        size: Size in bytes as reported by the directory listing
        mod_time: Modification time as a POSIX timestamp
    """

    path: str
    size: int
    mod_time: float


@dataclass(frozen=True)
class HashRecord:
    """A completed fingerprint for one file.

    Attributes:
        path: File path, copied from the originating FileTask
        digest: Raw SHA-1 digest (20 bytes)
        size: Number of bytes actually hashed
    """

    path: str
    digest: bytes
    size: int

    @property
    def hexdigest(self) -> str:
        """Lower-case hex encoding of the digest."""
        return self.digest.hex()


@dataclass(frozen=True)
class HashFailure:
    """A file that could not be opened or fully read.

    Attributes:
        path: File path, copied from the originating FileTask
        size: Size reported by the directory listing
        error: Human-readable cause
    """

    path: str
    size: int
    error: str


HashResult = Union[HashRecord, HashFailure]


@dataclass
class PipelineState:
    """Lifecycle counters for a single run.

    Each counter is only ever incremented by the stage that owns it; the
    orchestrator reads them after all stages have joined to confirm that
    nothing was dropped between stages.
    """

    dispatched: int = 0
    hashed: int = 0
    failed: int = 0
    written: int = 0
    errors_written: int = 0
    dirs_visited: int = 0
    dirs_skipped: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str, amount: int = 1) -> None:
        """Atomically add ``amount`` to the counter called ``name``."""
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def snapshot(self) -> dict[str, int]:
        """Return a consistent copy of all counters."""
        with self._lock:
            return {
                "dispatched": self.dispatched,
                "hashed": self.hashed,
                "failed": self.failed,
                "written": self.written,
                "errors_written": self.errors_written,
                "dirs_visited": self.dirs_visited,
                "dirs_skipped": self.dirs_skipped,
            }

    @property
    def drained(self) -> bool:
        """True when every dispatched task reached the writer exactly once."""
        with self._lock:
            return (
                self.dispatched == self.hashed + self.failed
                and self.hashed == self.written
                and self.failed == self.errors_written
            )
