"""Shared pytest fixtures for scaffold-sync tests."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

from scaffold_sync.fetch import DirectoryReleaseSource
from scaffold_sync.update import SyncContext, UpdateApplier

load_dotenv()

STATE_DIRNAME = ".scaffold_sync"


def _write(root: Path, files: dict) -> None:
    for rel, content in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        target.write_bytes(content)


class ReleaseBuilder:
    """Lay out releases as subdirectories of one root directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.source = DirectoryReleaseSource(root)

    def add(self, version: str, files: dict) -> Path:
        """Create release *version* with ``path -> str | bytes`` contents."""
        release_dir = self.root / version
        release_dir.mkdir(parents=True, exist_ok=True)
        _write(release_dir, files)
        return release_dir


@pytest.fixture
def releases(tmp_path):
    """An empty directory of releases with a ``DirectoryReleaseSource``."""
    return ReleaseBuilder(tmp_path / "releases")


@pytest.fixture
def project(tmp_path):
    """An empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def context(project):
    return SyncContext.for_project(project)


@pytest.fixture
def applier(releases, context):
    return UpdateApplier(releases.source, context)


@pytest.fixture
def write_files():
    """Factory fixture: write ``{path: str | bytes}`` under a root."""
    return _write


@pytest.fixture
def read_tree():
    """Factory fixture: map every file under a root to its bytes.

    The state directory (manifest, journal, backups) is excluded.
    """

    def _read(root: Path) -> dict[str, bytes]:
        tree = {}
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root)
            if rel.parts[0] == STATE_DIRNAME or not path.is_file():
                continue
            tree[rel.as_posix()] = path.read_bytes()
        return tree

    return _read


@pytest.fixture
def numbered_lines():
    """Factory fixture: ``n`` distinct newline-terminated lines."""

    def _lines(n: int, prefix: str = "line") -> list[str]:
        return [f"{prefix} {i}\n" for i in range(1, n + 1)]

    return _lines
