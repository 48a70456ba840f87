"""Serial record writer.

The only thread that touches the output log. Records are appended in the
order they arrive on the result channel, which is completion order rather
than traversal or alphabetical order.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, TextIO, Union

from treehash.models import HashFailure, HashRecord, HashResult, PipelineState
from treehash.services.channel import BoundedChannel

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineState], None]


# Paths are written verbatim except for line breaks, which would split a record
_LINE_BREAKS = str.maketrans({"\n": "\\n", "\r": "\\r"})


def escape_path(path: str) -> str:
    """Replace line breaks in a path with ``\\n`` / ``\\r`` escapes."""
    return path.translate(_LINE_BREAKS)


def format_record(record: HashRecord) -> str:
    """Format a record as an output line.

    The digest and size never contain commas, so a line always splits
    correctly with ``line.rsplit(",", 2)`` even when the path has commas.

    Args:
        record: Completed fingerprint

    Returns:
        ``path,hexdigest,size`` terminated by a newline
    """
    return f"{escape_path(record.path)},{record.hexdigest},{record.size}\n"


def format_failure(failure: HashFailure) -> str:
    """Format a failed file as an error-log line (``path,error``)."""
    return f"{escape_path(failure.path)},{escape_path(failure.error)}\n"


class RecordWriter:
    """Drains the result channel into the output log on a dedicated thread.

    The output file is opened once in append mode for the whole run.
    Failures go to a separate error log that is only created when the
    first failure arrives.
    """

    def __init__(
        self,
        results: BoundedChannel[HashResult],
        output_path: Union[str, Path],
        errors_path: Optional[Union[str, Path]] = None,
        state: Optional[PipelineState] = None,
    ):
        """Initialize the writer.

        Args:
            results: Channel of HashRecords and HashFailures
            output_path: Output log, opened in append mode
            errors_path: Error log (defaults to ``<output_path>.errors``)
            state: Pipeline counters (a new one is created when omitted)
        """
        self.results = results
        self.output_path = Path(output_path)
        self.errors_path = Path(errors_path) if errors_path else Path(f"{self.output_path}.errors")
        self.state = state if state is not None else PipelineState()

        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None
        self._progress_callbacks: list[ProgressCallback] = []

    def register_progress_callback(self, callback: ProgressCallback) -> None:
        """Register a callback invoked after each record is written.

        Args:
            callback: Function called with the pipeline state
        """
        self._progress_callbacks.append(callback)

    def _notify_progress(self) -> None:
        for callback in self._progress_callbacks:
            try:
                callback(self.state)
            except Exception:
                logger.exception("Progress callback failed")

    def start(self) -> None:
        """Open the output log and start the writer thread.

        The file is opened here, on the caller's thread, so a bad output
        path surfaces before any hashing starts.

        Raises:
            OSError: If the output log cannot be opened for append
            RuntimeError: If the writer has already been started
        """
        if self._thread is not None:
            raise RuntimeError("RecordWriter already started")

        output = open(self.output_path, "a", encoding="utf-8", newline="\n")
        self._thread = threading.Thread(
            target=self._run, args=(output,), name="treehash-writer", daemon=True
        )
        self._thread.start()
        logger.debug(f"Writer appending to {self.output_path}")

    def join(self) -> None:
        """Wait for the writer to drain the closed result channel.

        Raises:
            BaseException: Any error raised while writing
        """
        if self._thread is not None:
            self._thread.join()
        if self._error is not None:
            raise self._error

    def _run(self, output: TextIO) -> None:
        errors: Optional[TextIO] = None
        try:
            for result in self.results:
                if escape_path(result.path) != result.path:
                    logger.warning(f"Escaped line break in file name: {result.path!r}")
                if isinstance(result, HashRecord):
                    output.write(format_record(result))
                    self.state.increment("written")
                else:
                    if errors is None:
                        errors = open(self.errors_path, "a", encoding="utf-8", newline="\n")
                    errors.write(format_failure(result))
                    self.state.increment("errors_written")
                self._notify_progress()
        except Exception as e:
            self._error = e
            logger.exception(f"Writer failed for {self.output_path}")
            for _ in self.results:
                pass
        finally:
            output.close()
            if errors is not None:
                errors.close()
