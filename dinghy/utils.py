"""File-system helpers, verbosity handling and user-facing logging."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path

from termcolor import colored

log = logging.getLogger(__name__)


class DinghyError(Exception):
    """Raised when dinghy cannot carry out an operation."""


def copy_and_sync_file(src: str | os.PathLike, dst: str | os.PathLike) -> None:
    """Copy ``src`` to ``dst``, keeping the source access and modification times."""
    src = Path(src)
    dst = Path(dst)

    if not src.exists():
        raise DinghyError(f'Source "{src}" is missing')
    if not dst.parent.exists():
        raise DinghyError("Target directory is missing")

    if dst.exists():
        mode = dst.stat().st_mode
        if not mode & 0o222:
            os.chmod(dst, mode | stat.S_IWUSR)

    log.debug("copy %s to %s", src, dst)
    shutil.copy(src, dst)

    # Keeping the times avoids useless syncs on some devices.
    source_stat = src.stat()
    os.utime(dst, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))


def path_to_str(path: str | os.PathLike) -> str:
    """Return the path as text, failing when it is not valid UTF-8."""
    text = os.fspath(path)
    if isinstance(text, bytes):
        try:
            return text.decode("utf-8")
        except UnicodeDecodeError as error:
            raise DinghyError(f"Path is invalid '{text!r}'") from error
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as error:
        raise DinghyError(f"Path is invalid '{text!r}'") from error
    return text


def normalize_path(path: str | os.PathLike) -> Path:
    """Replace backslashes with forward slashes."""
    return Path(os.fspath(path).replace("\\", "/"))


def contains_file_with_ext(dir_path: str | os.PathLike, ext: str) -> bool:
    """Tell whether the directory directly holds an entry whose name ends with ``ext``."""
    dir_path = Path(dir_path)
    if not dir_path.is_dir():
        return False
    try:
        return any(entry.name.endswith(ext) for entry in os.scandir(dir_path))
    except OSError:
        return False


def _file_name(path: Path) -> str | None:
    name = path.name
    if name in ("", ".", ".."):
        return None
    return name


def destructure_path(path: str | os.PathLike) -> tuple[Path, str] | None:
    """Split a path into itself and its final component, or None when it has none."""
    path = Path(path)
    name = _file_name(path)
    if name is None:
        return None
    return path, name


def file_has_ext(file_path: str | os.PathLike, ext: str) -> bool:
    """Tell whether the path is a regular file whose name ends with ``ext``."""
    file_path = Path(file_path)
    name = _file_name(file_path)
    return file_path.is_file() and name is not None and name.endswith(ext)


def is_library(file_path: str | os.PathLike) -> bool:
    """Tell whether the path is a shared or static library file."""
    file_path = Path(file_path)
    name = _file_name(file_path)
    if name is None or not file_path.is_file():
        return False
    return (
        name.endswith(".so")
        or ".so." in name
        or name.endswith(".dylib")
        or name.endswith(".a")
    )


def lib_name_from(file_path: str | os.PathLike) -> str:
    """Derive a linker library name (``libfoo.so.1`` gives ``foo``) from a file path."""
    file_path = Path(file_path)
    name = _file_name(file_path)
    if name is None:
        raise DinghyError(f"'{file_path}' doesn't point to a valid lib name")

    end = name.find(".so")
    if end >= 0:
        start = 3 if name.startswith("lib") else 0
    else:
        start, end = 0, len(name)

    if start == end:
        raise DinghyError(f"'{file_path}' doesn't point to a valid lib name")
    return name[start:end]


def file_name_as_str(file_path: str | os.PathLike) -> str:
    """Return the final component of the path."""
    file_path = Path(file_path)
    name = _file_name(file_path)
    if name is None:
        raise DinghyError(f"'{file_path}' is not a valid file name")
    return name


_verbosity_lock = threading.Lock()
_current_verbosity = 0


def set_current_verbosity(verbosity: int) -> None:
    """Set the process-wide verbosity level."""
    global _current_verbosity
    with _verbosity_lock:
        _current_verbosity = verbosity


def get_current_verbosity() -> int:
    """Return the process-wide verbosity level."""
    with _verbosity_lock:
        return _current_verbosity


def user_facing_log(category: str, message: str, verbosity: int) -> None:
    """Print a categorised message on stderr when the verbosity allows it."""
    if verbosity <= get_current_verbosity():
        label = colored(f"{category:>12}", "blue", attrs=["bold"])
        print(f"{label} {message}", file=sys.stderr)


def _debug_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def log_invocation(
    command: Sequence[str | os.PathLike],
    verbosity: int,
    env: Mapping[str, str] | None = None,
) -> Sequence[str | os.PathLike]:
    """Report a command about to run; returns the command unchanged."""
    env_text = ""
    if env and verbosity + 1 < get_current_verbosity():
        env_text = "".join(f"{name}={_debug_str(value)} " for name, value in env.items())
    command_text = " ".join(_debug_str(os.fspath(arg)) for arg in command)
    user_facing_log("Running", f"{env_text}{command_text}", verbosity)
    return command