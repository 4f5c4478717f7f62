"""Shared fixtures for mobaudit tests."""

import textwrap
from datetime import datetime, timezone
from pathlib import Path

import pytest

FIXED_TIME = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    """Clock returning a constant time so reports can be compared byte for byte."""
    return lambda: FIXED_TIME


@pytest.fixture
def tmp_dir_with_files(tmp_path: Path):
    """Create a temp project directory with multiple files."""

    def _create(files: dict[str, str]) -> Path:
        for name, content in files.items():
            p = tmp_path / name
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(textwrap.dedent(content))
        return tmp_path

    return _create


@pytest.fixture
def out_dir(tmp_path_factory) -> Path:
    """Report directory kept outside the scanned project tree."""
    return tmp_path_factory.mktemp("reports")
