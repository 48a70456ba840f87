"""Shared fixtures for treehash tests."""

from pathlib import Path

import pytest


def write_tree(root: Path, files: dict[str, bytes]) -> Path:
    """Create files (and their parent directories) under root.

    Args:
        root: Directory to populate
        files: Mapping of root-relative path to file content

    Returns:
        The root directory
    """
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


def read_records(output: Path) -> list[tuple[str, str, int]]:
    """Parse an output log into (path, hexdigest, size) triples."""
    records = []
    for line in output.read_text(encoding="utf-8").splitlines():
        path, digest, size = line.rsplit(",", 2)
        records.append((path, digest, int(size)))
    return records


@pytest.fixture
def sample_tree(tmp_path):
    """A small nested tree outside the output directory."""
    root = tmp_path / "root"
    root.mkdir()
    return write_tree(
        root,
        {
            "a.txt": b"hi",
            "b.bin": b"\x00\x01\x02" * 1000,
            "skip/b.txt": b"skipped",
            "skip/deeper/c.txt": b"also skipped",
            "docs/readme.md": b"# readme\n",
            "docs/nested/deep/file.dat": b"x" * 5000,
            "empty.txt": b"",
        },
    )


@pytest.fixture
def out_dir(tmp_path):
    """Directory for output logs, separate from the hashed tree."""
    path = tmp_path / "out"
    path.mkdir()
    return path


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the config directory at a temporary location."""
    config_home = tmp_path / "config-home"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("APPDATA", str(config_home))
    for name in ("TREEHASH_WORKERS", "TREEHASH_WALKERS", "TREEHASH_OUTPUT", "TREEHASH_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return config_home


@pytest.fixture
def make_tree():
    """Return the write_tree helper."""
    return write_tree


@pytest.fixture
def parse_records():
    """Return the read_records helper."""
    return read_records
