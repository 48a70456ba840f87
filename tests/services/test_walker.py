"""Tests for directory traversal."""

import os
import threading
import time

import pytest

from treehash.models import FileTask, PipelineState
from treehash.services.channel import ChannelClosed, CompletionBarrier
from treehash.services.filter import NameFilter
from treehash.services.walker import DirectoryWalker, walk


def _relative(root, tasks):
    return sorted(os.path.relpath(task.path, root) for task in tasks)


def _live_treehash_threads(timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        alive = [t.name for t in threading.enumerate() if t.name.startswith("treehash-")]
        if not alive or time.monotonic() > deadline:
            return alive
        time.sleep(0.01)


class TestWalk:
    """Tests for the walk() generator."""

    def test_finds_every_file(self, sample_tree):
        """All regular files are emitted once, including nested ones."""
        tasks = list(walk(sample_tree))

        assert _relative(sample_tree, tasks) == sorted(
            [
                "a.txt",
                "b.bin",
                "empty.txt",
                os.path.join("docs", "readme.md"),
                os.path.join("docs", "nested", "deep", "file.dat"),
                os.path.join("skip", "b.txt"),
                os.path.join("skip", "deeper", "c.txt"),
            ]
        )

    def test_task_metadata(self, sample_tree):
        """FileTasks carry size and modification time from the listing."""
        tasks = {os.path.relpath(t.path, sample_tree): t for t in walk(sample_tree)}

        task = tasks["a.txt"]
        assert isinstance(task, FileTask)
        assert task.size == 2
        assert task.mod_time == pytest.approx(os.stat(sample_tree / "a.txt").st_mtime)

    def test_filtered_directory_prunes_subtree(self, sample_tree):
        """A matching directory excludes every descendant."""
        tasks = list(walk(sample_tree, NameFilter("^skip$")))
        paths = _relative(sample_tree, tasks)

        assert not any(p.startswith("skip") for p in paths)
        assert "a.txt" in paths
        assert len(paths) == 5

    def test_filtered_top_level_file_excludes_only_that_file(self, sample_tree):
        """A matching file name skips only that file."""
        paths = _relative(sample_tree, walk(sample_tree, NameFilter(r"^a\.txt$")))

        assert "a.txt" not in paths
        assert len(paths) == 6

    def test_filter_applies_to_base_name_only(self, sample_tree):
        """Parent directory names never cause a file to match."""
        paths = _relative(sample_tree, walk(sample_tree, NameFilter("^readme.md$")))

        assert os.path.join("docs", "readme.md") not in paths
        assert os.path.join("docs", "nested", "deep", "file.dat") in paths

    def test_paths_are_joined_onto_given_root(self, sample_tree):
        """Emitted paths start with the root exactly as given."""
        for task in walk(str(sample_tree)):
            assert task.path.startswith(str(sample_tree) + os.sep)

    def test_empty_directory_yields_nothing(self, tmp_path):
        """A root with only empty subdirectories produces no tasks."""
        (tmp_path / "a" / "b" / "c").mkdir(parents=True)

        assert list(walk(tmp_path)) == []

    @pytest.mark.parametrize("walker_count", [1, 2, 16])
    def test_result_independent_of_walker_count(self, sample_tree, walker_count):
        """The set of files does not depend on concurrency."""
        expected = _relative(sample_tree, walk(sample_tree, walker_count=1))

        assert _relative(sample_tree, walk(sample_tree, walker_count=walker_count)) == expected

    def test_wide_and_deep_tree(self, tmp_path, make_tree):
        """Many sibling and nested directories are all visited."""
        files = {}
        for i in range(30):
            files[f"wide{i}/file.txt"] = str(i).encode()
        deep = "/".join(f"d{i}" for i in range(40))
        files[f"{deep}/bottom.txt"] = b"bottom"
        make_tree(tmp_path, files)

        tasks = list(walk(tmp_path, walker_count=4, capacity=2))
        assert len(tasks) == 31

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinks_are_not_followed(self, tmp_path, make_tree):
        """Symlinked files and directories are ignored."""
        make_tree(tmp_path, {"real/file.txt": b"data"})
        os.symlink(tmp_path / "real" / "file.txt", tmp_path / "link.txt")
        os.symlink(tmp_path / "real", tmp_path / "linkdir")

        paths = _relative(tmp_path, walk(tmp_path))
        assert paths == [os.path.join("real", "file.txt")]

    @pytest.mark.parametrize("capacity", [0, 1])
    def test_closing_early_releases_threads(self, sample_tree, capacity):
        """Closing the generator after one item joins every walker thread."""
        gen = walk(sample_tree, walker_count=4, capacity=capacity)
        next(gen)
        gen.close()

        assert _live_treehash_threads() == []

    def test_break_out_of_loop_releases_threads(self, tmp_path, make_tree):
        """Breaking out of a for loop over a large tree leaves no threads behind."""
        make_tree(tmp_path, {f"d{i % 10}/f{i}.txt": b"x" for i in range(200)})

        for _ in walk(tmp_path, walker_count=3):
            break

        assert _live_treehash_threads() == []


class TestDirectoryWalker:
    """Tests for DirectoryWalker."""

    def test_sink_receives_tasks_and_counters_update(self, sample_tree):
        """Counters track visited directories; the sink gets every file."""
        received = []
        state = PipelineState()
        walker = DirectoryWalker(NameFilter(), received.append, walker_count=3, state=state)

        walker.start(sample_tree)
        walker.join()

        assert len(received) == 7
        # root, skip, skip/deeper, docs, docs/nested, docs/nested/deep
        assert state.dirs_visited == 6
        assert state.dirs_skipped == 0

    def test_barrier_drains_to_zero(self, sample_tree):
        """The directory barrier is back to zero after join()."""
        barrier = CompletionBarrier()
        walker = DirectoryWalker(NameFilter(), lambda task: None, walker_count=2, barrier=barrier)

        walker.start(sample_tree)
        walker.join()

        assert barrier.outstanding == 0

    def test_unlistable_directory_is_skipped(self, sample_tree, monkeypatch):
        """A listing failure skips that directory and the run continues."""
        real_scandir = os.scandir
        blocked = str(sample_tree / "docs")

        def flaky_scandir(path):
            if os.fspath(path) == blocked:
                raise PermissionError(13, "Permission denied", path)
            return real_scandir(path)

        monkeypatch.setattr("treehash.services.walker.os.scandir", flaky_scandir)

        received = []
        state = PipelineState()
        walker = DirectoryWalker(NameFilter(), received.append, walker_count=2, state=state)
        walker.start(sample_tree)
        walker.join()

        paths = _relative(sample_tree, received)
        assert not any(p.startswith("docs") for p in paths)
        assert "a.txt" in paths
        assert state.dirs_skipped == 1

    def test_sink_error_is_reraised_from_join(self, sample_tree):
        """An unexpected error in the sink surfaces when joining."""

        def broken_sink(task):
            raise RuntimeError("sink exploded")

        walker = DirectoryWalker(NameFilter(), broken_sink, walker_count=2)
        walker.start(sample_tree)

        with pytest.raises(RuntimeError, match="sink exploded"):
            walker.join()

    def test_closed_sink_stops_walking(self, sample_tree):
        """A sink that reports ChannelClosed ends the walk without an error."""
        received = []

        def closing_sink(task):
            received.append(task)
            raise ChannelClosed("downstream closed")

        walker = DirectoryWalker(NameFilter(), closing_sink, walker_count=1)
        walker.start(sample_tree)
        walker.join()

        assert walker.stopped
        assert len(received) == 1
        assert walker.barrier.outstanding == 0

    def test_invalid_walker_count(self):
        """At least one walker thread is required."""
        with pytest.raises(ValueError):
            DirectoryWalker(NameFilter(), lambda task: None, walker_count=0)

    def test_cannot_start_twice(self, sample_tree):
        """A walker is single-use."""
        walker = DirectoryWalker(NameFilter(), lambda task: None)
        walker.start(sample_tree)

        with pytest.raises(RuntimeError):
            walker.start(sample_tree)
        walker.join()
