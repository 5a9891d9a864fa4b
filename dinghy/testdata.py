"""Locating a project's sources and test data from within a running test."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dinghy.utils import DinghyError


def _on_device() -> bool:
    return sys.platform in ("ios", "android") or "DINGHY" in os.environ


def _current_exe(exe: str | os.PathLike | None) -> Path:
    if exe is not None:
        return Path(exe)
    return Path(sys.argv[0]).resolve()


def test_project_path(exe: str | os.PathLike | None = None) -> Path:
    """Return the directory holding the project sources."""
    if _on_device():
        return _current_exe(exe).parent
    return Path(".")


def test_file_path(test_data_id: str, exe: str | os.PathLike | None = None) -> Path:
    """Return the path of a test data entry, raising when it is unknown."""
    path = try_test_file_path(test_data_id, exe)
    if path is None:
        raise DinghyError(f"Couldn't find test data {test_data_id}")
    return path


def try_test_file_path(
    test_data_id: str, exe: str | os.PathLike | None = None
) -> Path | None:
    """Return the path of a test data entry, or None when it cannot be found."""
    current_exe = _current_exe(exe)

    if _on_device():
        return current_exe.parent / "test_data" / test_data_id

    parent = current_exe.parent
    grandparent = parent.parent
    if parent == current_exe or grandparent == parent or not current_exe.name:
        return None
    test_data_path = grandparent / "dinghy" / current_exe.name / "test_data"

    try:
        contents = (test_data_path / "test_data.cfg").read_text()
    except (OSError, UnicodeDecodeError):
        return None

    for line in contents.splitlines():
        parts = line.split(":")
        if parts[0] == test_data_id:
            return Path(parts[1]) if len(parts) > 1 else None
    return None