"""Tests for the hash worker pool."""

import hashlib
from pathlib import Path

import pytest

from treehash.models import FileTask, HashFailure, HashRecord, PipelineState
from treehash.services.channel import BoundedChannel
from treehash.services.workers import WorkerPool


def _task(path, size=0):
    return FileTask(path=str(path), size=size, mod_time=0.0)


def _run_pool(tasks, worker_count=3, **kwargs):
    dispatch = BoundedChannel(capacity=None)
    results = BoundedChannel(capacity=None)
    state = PipelineState()
    for task in tasks:
        dispatch.put(task)
    dispatch.close()

    pool = WorkerPool(dispatch, results, worker_count, state=state, **kwargs)
    pool.start()
    pool.join()
    results.close()
    return list(results), state


class TestWorkerPool:
    """Tests for WorkerPool."""

    def test_hashes_every_task_once(self, tmp_path):
        """Each task yields exactly one record with the right digest."""
        tasks = []
        for i in range(25):
            path = tmp_path / f"f{i}.txt"
            path.write_bytes(f"content {i}".encode())
            tasks.append(_task(path))

        results, state = _run_pool(tasks, worker_count=4)

        assert len(results) == 25
        assert len({r.path for r in results}) == 25
        for record in results:
            assert isinstance(record, HashRecord)
            content = Path(record.path).read_bytes()
            assert record.digest == hashlib.sha1(content).digest()
            assert record.size == len(content)
        assert state.hashed == 25
        assert state.failed == 0

    def test_missing_file_becomes_failure(self, tmp_path):
        """A file that vanished is reported as a HashFailure, not a digest."""
        present = tmp_path / "present.txt"
        present.write_bytes(b"here")

        results, state = _run_pool([_task(present), _task(tmp_path / "gone.txt", size=10)])

        failures = [r for r in results if isinstance(r, HashFailure)]
        records = [r for r in results if isinstance(r, HashRecord)]
        assert len(records) == 1
        assert len(failures) == 1
        assert failures[0].path == str(tmp_path / "gone.txt")
        assert failures[0].size == 10
        assert failures[0].error
        assert state.failed == 1

    def test_small_chunk_size(self, tmp_path):
        """Chunk size does not change the digest."""
        path = tmp_path / "data.bin"
        content = bytes(range(256)) * 50
        path.write_bytes(content)

        results, _ = _run_pool([_task(path)], worker_count=1, chunk_size=13)

        assert results[0].digest == hashlib.sha1(content).digest()

    def test_unexpected_error_keeps_draining(self, tmp_path):
        """A non-I/O error is reported from join() after all tasks are consumed."""
        calls = []

        def broken_digest(path, buffer):
            calls.append(path)
            raise ValueError("boom")

        dispatch = BoundedChannel(capacity=None)
        results = BoundedChannel(capacity=None)
        for i in range(5):
            dispatch.put(_task(tmp_path / f"{i}"))
        dispatch.close()

        pool = WorkerPool(dispatch, results, 2, digest_func=broken_digest)
        pool.start()
        with pytest.raises(ValueError, match="boom"):
            pool.join()
        assert len(calls) == 5
        assert len(dispatch) == 0

    def test_workers_block_on_full_result_channel(self, tmp_path):
        """Workers stall when nobody drains results, then resume."""
        tasks = []
        for i in range(6):
            path = tmp_path / f"{i}.txt"
            path.write_bytes(b"x")
            tasks.append(_task(path))

        dispatch = BoundedChannel(capacity=None)
        results = BoundedChannel(capacity=1)
        for task in tasks:
            dispatch.put(task)
        dispatch.close()

        pool = WorkerPool(dispatch, results, 2)
        pool.start()

        received = []
        for _ in range(6):
            received.append(results.get())
        pool.join()

        assert len(received) == 6

    @pytest.mark.parametrize("kwargs", [{"worker_count": 0}, {"worker_count": 1, "chunk_size": 0}])
    def test_invalid_sizes(self, kwargs):
        """Pool size and chunk size must be positive."""
        with pytest.raises(ValueError):
            WorkerPool(BoundedChannel(), BoundedChannel(), **kwargs)
