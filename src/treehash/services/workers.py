"""Hash worker pool.

A fixed number of threads drain the dispatch channel, hash each file
through a per-thread reusable buffer and push one result per task onto
the result channel. hashlib releases the GIL while digesting large
chunks, so threads overlap both the disk reads and the hashing itself.
"""

import logging
import threading
from typing import Callable, Optional

from treehash.models import FileTask, HashFailure, HashRecord, HashResult, PipelineState
from treehash.services.channel import BoundedChannel
from treehash.services.hasher import DEFAULT_CHUNK_SIZE, compute_file_digest

logger = logging.getLogger(__name__)

DigestFunc = Callable[[str, bytearray], tuple[bytes, int]]


class WorkerPool:
    """Fixed-size pool of hashing threads.

    Workers exit once the dispatch channel is closed and drained. A file
    that cannot be opened or read produces a HashFailure instead of a
    HashRecord, so every task yields exactly one result.
    """

    def __init__(
        self,
        dispatch: BoundedChannel[FileTask],
        results: BoundedChannel[HashResult],
        worker_count: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        state: Optional[PipelineState] = None,
        digest_func: Optional[DigestFunc] = None,
    ):
        """Initialize the pool.

        Args:
            dispatch: Channel of FileTasks to hash
            results: Channel receiving one HashResult per task
            worker_count: Number of worker threads (>= 1)
            chunk_size: Read buffer size per worker, in bytes
            state: Pipeline counters (a new one is created when omitted)
            digest_func: Function hashing a path through a buffer
                (compute_file_digest when omitted)

        Raises:
            ValueError: If worker_count or chunk_size is less than 1
        """
        if worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {worker_count}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

        self.dispatch = dispatch
        self.results = results
        self.worker_count = worker_count
        self.chunk_size = chunk_size
        self.state = state if state is not None else PipelineState()
        self.digest_func = digest_func or compute_file_digest

        self._threads: list[threading.Thread] = []
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()

    def start(self) -> None:
        """Start all worker threads.

        Raises:
            RuntimeError: If the pool has already been started
        """
        if self._threads:
            raise RuntimeError("WorkerPool already started")

        for i in range(self.worker_count):
            thread = threading.Thread(target=self._run, name=f"treehash-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)

        logger.debug(f"Started {self.worker_count} hash workers (chunk size {self.chunk_size})")

    def join(self) -> None:
        """Wait for every worker to exit.

        Raises:
            BaseException: The first unexpected error raised in a worker thread
        """
        for thread in self._threads:
            thread.join()
        if self._errors:
            raise self._errors[0]

    def hash_task(self, task: FileTask, buffer: bytearray) -> HashResult:
        """Hash a single task.

        Args:
            task: File to hash
            buffer: Scratch buffer owned by the calling worker

        Returns:
            HashRecord on success, HashFailure if the file could not be read
        """
        try:
            digest, size = self.digest_func(task.path, buffer)
        except OSError as e:
            logger.warning(f"Failed to hash {task.path}: {e}")
            return HashFailure(path=task.path, size=task.size, error=e.strerror or str(e))
        return HashRecord(path=task.path, digest=digest, size=size)

    def _run(self) -> None:
        buffer = bytearray(self.chunk_size)
        for task in self.dispatch:
            try:
                result = self.hash_task(task, buffer)
            except Exception as e:
                # Keep draining so upstream producers never block on a dead pool
                with self._errors_lock:
                    self._errors.append(e)
                logger.exception(f"Unexpected error hashing {task.path}")
                continue

            if isinstance(result, HashRecord):
                self.state.increment("hashed")
            else:
                self.state.increment("failed")
            self.results.put(result)
