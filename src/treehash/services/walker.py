"""Concurrent directory traversal.

A fixed number of walker threads pull directories from a shared frontier,
list each one, push subdirectories back onto the frontier and hand every
regular file to a downstream sink as a FileTask. A CompletionBarrier
counts directories that are queued or being listed; when it reaches zero
the whole tree has been visited and the frontier is closed so the walkers
exit.

Directories that cannot be listed are logged and skipped. The run keeps
going with whatever part of the tree is readable.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from treehash.models import FileTask, PipelineState
from treehash.services.channel import BoundedChannel, ChannelClosed, CompletionBarrier
from treehash.services.filter import NameFilter

logger = logging.getLogger(__name__)

FileSink = Callable[[FileTask], None]


class DirectoryWalker:
    """Bounded pool of threads enumerating a directory tree.

    Attributes:
        name_filter: Filter applied to the base name of every entry
        sink: Callable receiving each discovered FileTask; may block
        walker_count: Number of concurrent walker threads
        barrier: Counts directories queued or in progress
        state: Counters updated as directories are visited or skipped
    """

    def __init__(
        self,
        name_filter: NameFilter,
        sink: FileSink,
        walker_count: int = 4,
        barrier: Optional[CompletionBarrier] = None,
        state: Optional[PipelineState] = None,
    ):
        """Initialize the walker pool.

        Args:
            name_filter: Filter applied to every entry name
            sink: Callable receiving each discovered FileTask
            walker_count: Number of concurrent walker threads (>= 1)
            barrier: Directory-visit barrier (a new one is created when omitted)
            state: Pipeline counters (a new one is created when omitted)

        Raises:
            ValueError: If walker_count is less than 1
        """
        if walker_count < 1:
            raise ValueError(f"walker_count must be >= 1, got {walker_count}")

        self.name_filter = name_filter
        self.sink = sink
        self.walker_count = walker_count
        self.barrier = barrier if barrier is not None else CompletionBarrier("directories")
        self.state = state if state is not None else PipelineState()

        self._frontier: BoundedChannel[str] = BoundedChannel(capacity=None, name="frontier")
        self._threads: list[threading.Thread] = []
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()
        self._stopped = threading.Event()

    def start(self, root: Union[str, Path]) -> None:
        """Seed the frontier with root and start the walker threads.

        Args:
            root: Directory to traverse

        Raises:
            RuntimeError: If the walker has already been started
        """
        if self._threads:
            raise RuntimeError("DirectoryWalker already started")

        self.barrier.add(1)
        self._frontier.put(os.fspath(root))

        for i in range(self.walker_count):
            thread = threading.Thread(target=self._run, name=f"treehash-walker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)

        logger.debug(f"Started {self.walker_count} walker threads at {root}")

    def join(self) -> None:
        """Wait until every reachable directory has been visited.

        Closes the frontier once the barrier drains and joins all walker
        threads.

        Raises:
            BaseException: The first unexpected error raised in a walker thread
        """
        self.barrier.wait()
        self._frontier.close()
        for thread in self._threads:
            thread.join()
        logger.debug(f"Walker threads finished: {self.state.snapshot()}")

        if self._errors:
            raise self._errors[0]

    def stop(self) -> None:
        """Abandon the traversal.

        Directories still queued are dropped without being listed, and
        join() returns once the walker threads have wound down.
        """
        if not self._stopped.is_set():
            logger.debug("Walker stopped before the tree was exhausted")
        self._stopped.set()
        self._frontier.close()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def _run(self) -> None:
        for directory in self._frontier:
            try:
                if not self._stopped.is_set():
                    self._visit(directory)
            except BaseException as e:
                with self._errors_lock:
                    self._errors.append(e)
                logger.exception(f"Walker failed while visiting {directory}")
            finally:
                self.barrier.done()

    def _visit(self, directory: str) -> None:
        """List one directory, queue subdirectories and emit files."""
        try:
            with os.scandir(directory) as entries:
                listing = list(entries)
        except OSError as e:
            self.state.increment("dirs_skipped")
            logger.warning(f"Skipping unreadable directory {directory}: {e}")
            return

        self.state.increment("dirs_visited")

        for entry in listing:
            if self.name_filter.matches(entry.name):
                logger.debug(f"Filtered {entry.path}")
                continue

            try:
                if entry.is_dir(follow_symlinks=False):
                    self.barrier.add(1)
                    try:
                        self._frontier.put(entry.path)
                    except ChannelClosed:
                        self.barrier.done()
                        return
                elif entry.is_file(follow_symlinks=False):
                    st = entry.stat(follow_symlinks=False)
                    task = FileTask(path=entry.path, size=st.st_size, mod_time=st.st_mtime)
                    self.sink(task)
                else:
                    logger.debug(f"Ignoring non-regular entry {entry.path}")
            except ChannelClosed:
                # Downstream went away; nothing more can be delivered
                self.stop()
                return
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {entry.path}: {e}")


def walk(
    root: Union[str, Path],
    name_filter: Optional[NameFilter] = None,
    walker_count: int = 4,
    capacity: Optional[int] = 0,
) -> Iterator[FileTask]:
    """Lazily enumerate regular files under root.

    Traversal runs on background walker threads; tasks are yielded as they
    are discovered, in no particular order. Abandoning the generator early
    (break, close() or garbage collection) stops and joins those threads.

    Args:
        root: Directory to traverse
        name_filter: Exclusion filter (nothing is excluded when omitted)
        walker_count: Number of concurrent walker threads
        capacity: Buffer between the walkers and the caller

    Yields:
        One FileTask per regular file not excluded by the filter
    """
    channel: BoundedChannel[FileTask] = BoundedChannel(capacity=capacity, name="walk")
    walker = DirectoryWalker(
        name_filter if name_filter is not None else NameFilter(),
        channel.put,
        walker_count=walker_count,
    )
    walker.start(root)
    errors: list[BaseException] = []

    def close_when_done() -> None:
        try:
            walker.join()
        except BaseException as e:
            errors.append(e)
        finally:
            channel.close()

    closer = threading.Thread(target=close_when_done, name="treehash-walk-closer", daemon=True)
    closer.start()

    try:
        while True:
            try:
                yield channel.get()
            except ChannelClosed:
                break
    finally:
        # A caller that stops early must not leave walker threads behind
        channel.close()
        walker.stop()
        closer.join()

    if errors:
        raise errors[0]
