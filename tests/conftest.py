"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from datasync.connectors import MemoryConnector
from tests.helpers import FlakyConnector

# ============================================================================
# Connector fixtures
# ============================================================================


@pytest.fixture
def source() -> MemoryConnector:
    """Empty in-memory source named "src"."""
    return MemoryConnector("src")


@pytest.fixture
def destination() -> FlakyConnector:
    """Empty in-memory destination named "dst" with failure hooks."""
    return FlakyConnector("dst")


# ============================================================================
# Filesystem fixtures
# ============================================================================


def write_tree(root: Path, files: dict) -> None:
    """Create files under root from a {relative path: text} mapping."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def destination_dir(tmp_path: Path) -> Path:
    path = tmp_path / "destination"
    path.mkdir()
    return path
