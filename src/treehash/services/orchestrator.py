"""Pipeline orchestration for a treehash run.

Wires the walker, the hash worker pool and the record writer together
through two bounded channels, and drives the run through its stages:

    VALIDATING -> RUNNING -> DRAINING -> DONE
         |
         +-> FAILED

Draining happens strictly downstream: the walkers finish (the directory
barrier reaches zero), then the dispatch channel is closed and the workers
exit, then the result channel is closed and the writer exits. Only when
every stage has joined and the counters agree does the run report success.
"""

import logging
import os
import stat
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Optional, Union

from treehash.models import ExitCode, FileTask, HashResult, PipelineState
from treehash.services.channel import BoundedChannel, CompletionBarrier
from treehash.services.filter import NameFilter
from treehash.services.hasher import DEFAULT_CHUNK_SIZE
from treehash.services.walker import DirectoryWalker
from treehash.services.workers import WorkerPool
from treehash.services.writer import ProgressCallback, RecordWriter

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATH = "treehash.txt"
DEFAULT_RESULT_CAPACITY = 64
DISPATCH_PER_WORKER = 4


def default_worker_count() -> int:
    """Default number of hash workers, sized like ThreadPoolExecutor's I/O default."""
    return min(32, (os.cpu_count() or 1) + 4)


def default_walker_count() -> int:
    """Default number of concurrent directory walkers."""
    return min(8, os.cpu_count() or 1)


class PipelineStage(Enum):
    """Lifecycle stage of a run."""

    IDLE = auto()
    VALIDATING = auto()
    RUNNING = auto()
    DRAINING = auto()
    DONE = auto()
    FAILED = auto()


class ValidationError(Exception):
    """A startup check failed; nothing was hashed.

    Attributes:
        exit_code: Process exit code for this failure class
    """

    def __init__(self, exit_code: ExitCode, message: str):
        super().__init__(message)
        self.exit_code = exit_code


class PipelineError(Exception):
    """A stage failed unexpectedly or records went missing between stages."""


@dataclass
class TraversalResult:
    """Outcome of a completed run.

    Attributes:
        root: Directory that was traversed
        output_path: Output log the records were appended to
        errors_path: Error log for files that could not be hashed
        counters: Final pipeline counters
        duration_seconds: Wall-clock duration of the run
    """

    root: str
    output_path: Path
    errors_path: Path
    counters: dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def files_written(self) -> int:
        return self.counters.get("written", 0)

    @property
    def files_failed(self) -> int:
        return self.counters.get("errors_written", 0)


class TreeHashOrchestrator:
    """Runs one traversal of a directory tree.

    An orchestrator is single-use: construct it with the run parameters,
    then call run() once.
    """

    def __init__(
        self,
        root: Union[str, Path, None],
        output_path: Union[str, Path, None] = None,
        name_filter: Optional[NameFilter] = None,
        errors_path: Union[str, Path, None] = None,
        workers: Optional[int] = None,
        walkers: Optional[int] = None,
        dispatch_capacity: Optional[int] = None,
        result_capacity: Optional[int] = DEFAULT_RESULT_CAPACITY,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize the orchestrator.

        Args:
            root: Directory to traverse
            output_path: Output log; DEFAULT_OUTPUT_PATH when empty
            name_filter: Exclusion filter (nothing excluded when omitted)
            errors_path: Error log (``<output_path>.errors`` when empty)
            workers: Hash worker count (CPU-derived default when None)
            walkers: Directory walker count (CPU-derived default when None)
            dispatch_capacity: Dispatch channel capacity (workers * 4 when None)
            result_capacity: Result channel capacity
            chunk_size: Per-worker read buffer size in bytes
        """
        self.root = os.fspath(root) if root else ""
        self.output_path = Path(output_path) if output_path else Path(DEFAULT_OUTPUT_PATH)
        self.errors_path = Path(errors_path) if errors_path else Path(f"{self.output_path}.errors")
        self.name_filter = name_filter if name_filter is not None else NameFilter()
        self.workers = workers or default_worker_count()
        self.walkers = walkers or default_walker_count()
        self.dispatch_capacity = (
            dispatch_capacity if dispatch_capacity is not None else self.workers * DISPATCH_PER_WORKER
        )
        self.result_capacity = result_capacity
        self.chunk_size = chunk_size

        self.state = PipelineState()
        self._stage = PipelineStage.IDLE
        self._progress_callbacks: list[ProgressCallback] = []
        self._stage_callbacks: list[Callable[[PipelineStage], None]] = []
        self._excluded: set[str] = set()

    @property
    def stage(self) -> PipelineStage:
        return self._stage

    def register_progress_callback(self, callback: ProgressCallback) -> None:
        """Register a callback invoked by the writer after each record."""
        self._progress_callbacks.append(callback)

    def register_stage_callback(self, callback: Callable[[PipelineStage], None]) -> None:
        """Register a callback invoked on every stage transition."""
        self._stage_callbacks.append(callback)

    def _set_stage(self, stage: PipelineStage) -> None:
        logger.debug(f"Stage {self._stage.name} -> {stage.name}")
        self._stage = stage
        for callback in self._stage_callbacks:
            callback(stage)

    def _fail(self, exit_code: ExitCode, message: str) -> ValidationError:
        self._set_stage(PipelineStage.FAILED)
        logger.error(f"Validation failed ({exit_code.name}): {message}")
        return ValidationError(exit_code, message)

    def validate(self) -> None:
        """Check the root directory and output path.

        Raises:
            ValidationError: With the exit code for the first failed check
        """
        self._set_stage(PipelineStage.VALIDATING)

        if not self.root:
            raise self._fail(ExitCode.PATH_NULL, "root path must not be empty")

        try:
            st = os.stat(self.root)
        except PermissionError:
            raise self._fail(ExitCode.PERMISSION, f"{self.root}: permission denied")
        except OSError:
            raise self._fail(ExitCode.INVALID_PATH, f"{self.root} is not a valid path")

        if not stat.S_ISDIR(st.st_mode):
            raise self._fail(ExitCode.FILE_NOT_DIR, f"{self.root} is not a directory")

        try:
            with os.scandir(self.root) as entries:
                has_children = any(True for _ in entries)
        except PermissionError:
            raise self._fail(ExitCode.PERMISSION, f"{self.root}: permission denied")
        except OSError as e:
            raise self._fail(ExitCode.INVALID_PATH, f"{self.root} cannot be listed: {e}")

        if not has_children:
            raise self._fail(ExitCode.NO_CHILDREN, f"{self.root} has no files or subdirectories")

        for path in (self.output_path, self.errors_path):
            self._validate_output(path)

        logger.debug(f"Validated root {self.root} and output {self.output_path}")

    def _validate_output(self, path: Path) -> None:
        if path.is_dir():
            raise self._fail(ExitCode.OUTPUT_PATH, f"output path {path} is a directory")

        parent = path.parent
        if not parent.is_dir():
            raise self._fail(ExitCode.OUTPUT_PATH, f"output directory {parent} does not exist")

        target = path if path.exists() else parent
        if not os.access(target, os.W_OK):
            raise self._fail(ExitCode.PERMISSION, f"output path {path} is not writable")

    def _exclude_outputs(self) -> None:
        # The run's own logs must never be hashed while they are being written
        self._excluded = {
            os.path.abspath(self.output_path),
            os.path.abspath(self.errors_path),
        }

    def run(self) -> TraversalResult:
        """Validate, run all stages to completion and report the outcome.

        Returns:
            TraversalResult with the final counters and duration

        Raises:
            ValidationError: If a startup check fails
            PipelineError: If a stage fails or the counters disagree after draining
        """
        started = time.monotonic()
        self.validate()
        self._exclude_outputs()

        logger.info(
            f"Hashing {self.root} -> {self.output_path} "
            f"(workers={self.workers}, walkers={self.walkers}, filter={self.name_filter!r})"
        )

        dispatch: BoundedChannel[FileTask] = BoundedChannel(self.dispatch_capacity, name="dispatch")
        results: BoundedChannel[HashResult] = BoundedChannel(self.result_capacity, name="results")

        def dispatch_task(task: FileTask) -> None:
            if os.path.abspath(task.path) in self._excluded:
                logger.debug(f"Skipping own output file {task.path}")
                return
            dispatch.put(task)
            self.state.increment("dispatched")

        writer = RecordWriter(results, self.output_path, self.errors_path, state=self.state)
        for callback in self._progress_callbacks:
            writer.register_progress_callback(callback)
        pool = WorkerPool(dispatch, results, self.workers, chunk_size=self.chunk_size, state=self.state)
        walker = DirectoryWalker(
            self.name_filter,
            dispatch_task,
            walker_count=self.walkers,
            barrier=CompletionBarrier("directories"),
            state=self.state,
        )

        self._set_stage(PipelineStage.RUNNING)
        try:
            writer.start()
        except PermissionError as e:
            raise self._fail(ExitCode.PERMISSION, f"cannot open output {self.output_path}: {e}")
        except OSError as e:
            raise self._fail(ExitCode.OUTPUT_PATH, f"cannot open output {self.output_path}: {e}")
        pool.start()
        walker.start(self.root)

        errors = self._drain(walker, dispatch, pool, results, writer)
        counters = self.state.snapshot()

        if errors:
            self._set_stage(PipelineStage.FAILED)
            raise PipelineError(f"pipeline stage failed: {errors[0]}") from errors[0]
        if not self.state.drained:
            self._set_stage(PipelineStage.FAILED)
            raise PipelineError(f"pipeline counters disagree after draining: {counters}")

        self._set_stage(PipelineStage.DONE)
        result = TraversalResult(
            root=self.root,
            output_path=self.output_path,
            errors_path=self.errors_path,
            counters=counters,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            f"Finished {self.root}: {result.files_written} written, "
            f"{result.files_failed} failed, {counters['dirs_skipped']} directories skipped "
            f"in {result.duration_seconds:.3f}s"
        )
        return result

    def _drain(
        self,
        walker: DirectoryWalker,
        dispatch: BoundedChannel[FileTask],
        pool: WorkerPool,
        results: BoundedChannel[HashResult],
        writer: RecordWriter,
    ) -> list[BaseException]:
        """Join each stage in order, closing its output channel once it is done."""
        errors: list[BaseException] = []

        try:
            walker.join()
        except Exception as e:
            errors.append(e)
        self._set_stage(PipelineStage.DRAINING)
        dispatch.close()

        try:
            pool.join()
        except Exception as e:
            errors.append(e)
        results.close()

        try:
            writer.join()
        except Exception as e:
            errors.append(e)

        return errors


def traverse(
    root: Union[str, Path, None],
    filter_pattern: str = "",
    output: Union[str, Path, None] = "",
    **kwargs,
) -> ExitCode:
    """Hash every file under root and return the process exit code.

    Args:
        root: Directory to traverse
        filter_pattern: Regex excluding matching entry names
        output: Output log path; DEFAULT_OUTPUT_PATH when empty
        **kwargs: Extra TreeHashOrchestrator arguments

    Returns:
        ExitCode.SUCCESS, the exit code of the failed startup check, or
        ExitCode.PIPELINE_ERROR when a stage failed during the run
    """
    orchestrator = TreeHashOrchestrator(
        root,
        output_path=output,
        name_filter=NameFilter(filter_pattern),
        **kwargs,
    )
    try:
        orchestrator.run()
    except ValidationError as e:
        return e.exit_code
    except PipelineError as e:
        logger.error(f"Traversal of {root} failed: {e}")
        return ExitCode.PIPELINE_ERROR
    return ExitCode.SUCCESS
