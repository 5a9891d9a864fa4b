"""A project's layout, its test data and recursive copying with ignore rules."""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import stat
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from dinghy.config import Configuration
from dinghy.core import Platform, Runnable
from dinghy.utils import DinghyError, copy_and_sync_file, path_to_str

log = logging.getLogger(__name__)


@dataclass
class Metadata:
    """Where a workspace lives and where it builds to."""

    workspace_root: Path
    target_directory: Path

    def __post_init__(self) -> None:
        self.workspace_root = Path(self.workspace_root)
        self.target_directory = Path(self.target_directory)


def _parent_or_root(path: Path) -> Path:
    return path.parent if path.parent != path else Path("/")


@dataclass
class Project:
    """A workspace together with the configuration that applies to it."""

    conf: Configuration
    metadata: Metadata

    def project_dir(self) -> Path:
        """Return the workspace root."""
        return self.metadata.workspace_root

    def overlay_work_dir(self, platform: Platform) -> Path:
        """Return the directory where overlays for ``platform`` are prepared."""
        triple = platform.rustc_triple()
        return self.target_dir(triple) / triple

    def target_dir(self, triple: str) -> Path:
        """Return the build output directory for a target triple."""
        return self.metadata.target_directory / triple

    def link_test_data(self, runnable: Runnable) -> Path:
        """Write the test data index next to the runnable and return its directory."""
        exe = Path(runnable.exe)
        if not exe.name:
            raise DinghyError(f"{exe} is not a valid executable path")
        test_data_path = exe.parent.parent / "dinghy" / exe.name / "test_data"
        test_data_path.mkdir(parents=True, exist_ok=True)

        cfg_path = test_data_path / "test_data.cfg"
        log.debug("Generating %s", cfg_path)
        lines = []
        for test_data in self.conf.test_data:
            target = _parent_or_root(Path(test_data.base)) / test_data.source
            lines.append(f"{test_data.id}:{path_to_str(target)}\n")
        cfg_path.write_text("".join(lines), encoding="utf-8")
        return test_data_path

    def copy_test_data(self, app_path: str | os.PathLike) -> None:
        """Copy every configured test data entry under ``app_path/test_data``."""
        test_data_path = Path(app_path) / "test_data"
        test_data_path.mkdir(parents=True, exist_ok=True)

        for test_data in self.conf.test_data:
            source = _parent_or_root(Path(test_data.base)) / test_data.source
            if not source.exists():
                log.warning(
                    "configuration required test_data `%r` but it could not be found",
                    test_data,
                )
                continue
            destination = test_data_path / test_data.id
            if source.is_dir():
                rec_copy(source, destination, test_data.copy_git_ignored)
            else:
                copy_and_sync_file(source, destination)


@dataclass(frozen=True)
class _Rule:
    base: Path
    pattern: str
    negated: bool
    dir_only: bool
    anchored: bool

    def matches(self, path: Path, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        try:
            relative = path.absolute().relative_to(self.base)
        except ValueError:
            return False
        if self.anchored:
            return fnmatch.fnmatchcase(relative.as_posix(), self.pattern)
        return fnmatch.fnmatchcase(path.name, self.pattern)


def _parse_ignore_file(file: Path) -> list[_Rule]:
    try:
        text = file.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return []
    base = file.parent.absolute()
    rules = []
    for raw in text.splitlines():
        line = raw.rstrip()
        if not line or line.startswith("#"):
            continue
        negated = line.startswith("!")
        if negated or line.startswith("\\"):
            line = line[1:]
        dir_only = line.endswith("/")
        line = line.rstrip("/")
        if line.startswith("**/"):
            line = line[3:]
        if not line:
            continue
        anchored = "/" in line
        pattern = line.lstrip("/").replace("**", "*")
        rules.append(_Rule(base, pattern, negated, dir_only, anchored))
    return rules


def _is_ignored(rules: Sequence[_Rule], path: Path, is_dir: bool) -> bool:
    for rule in reversed(rules):
        if rule.matches(path, is_dir):
            return not rule.negated
    return False


def _git_root(directory: Path) -> Path | None:
    directory = directory.absolute()
    return next(
        (candidate for candidate in (directory, *directory.parents) if (candidate / ".git").exists()),
        None,
    )


def _directory_rules(directory: Path, use_git: bool) -> list[_Rule]:
    rules = _parse_ignore_file(directory / ".gitignore") if use_git else []
    return rules + _parse_ignore_file(directory / ".ignore")


def _is_excluded(path: Path, excludes: Sequence[Path]) -> bool:
    return any(path.is_relative_to(exclude) for exclude in excludes)


def _walk(
    src: Path, git_ignore: bool, ignore_file: Path, excludes: Sequence[Path]
) -> Iterator[Path]:
    if _is_excluded(src, excludes):
        log.debug("Exclude %s", src)
        return
    yield src
    if not src.is_dir():
        return

    rules = _parse_ignore_file(ignore_file)
    git_root = _git_root(src) if git_ignore else None
    use_git = git_root is not None
    if git_root is not None:
        absolute = src.absolute()
        ancestors = [p for p in absolute.parents if p.is_relative_to(git_root)]
        for ancestor in reversed(ancestors):
            rules += _parse_ignore_file(ancestor / ".gitignore")
    yield from _walk_dir(src, rules, use_git, excludes, frozenset())


def _walk_dir(
    directory: Path,
    rules: list[_Rule],
    use_git: bool,
    excludes: Sequence[Path],
    visited: frozenset[Path],
) -> Iterator[Path]:
    key = directory.resolve()
    if key in visited:
        return
    visited = visited | {key}
    rules = rules + _directory_rules(directory, use_git)
    for child in sorted(directory.iterdir()):
        if child.name.startswith("."):
            continue
        is_dir = child.is_dir()
        if _is_ignored(rules, child, is_dir):
            continue
        if _is_excluded(child, excludes):
            log.debug("Exclude %s", child)
            continue
        yield child
        if is_dir:
            yield from _walk_dir(child, rules, use_git, excludes, visited)


def rec_copy(
    src: str | os.PathLike, dst: str | os.PathLike, copy_ignored_test_data: bool
) -> None:
    """Copy a file or a directory tree, honouring ignore files."""
    rec_copy_excl(src, dst, copy_ignored_test_data, [])


def rec_copy_excl(
    src: str | os.PathLike,
    dst: str | os.PathLike,
    copy_ignored_test_data: bool,
    more_exclude: Sequence[str | os.PathLike],
) -> None:
    """Copy a file or a directory tree, skipping the given paths and ignored entries.

    Hidden entries and those matched by ``.dinghyignore`` or ``.ignore`` files are
    skipped; ``.gitignore`` files inside a git repository are honoured unless
    ``copy_ignored_test_data`` is true. Up-to-date files are left alone.
    """
    src = Path(src)
    dst = Path(dst)
    excludes = [Path(item) for item in more_exclude]
    log.debug("Copying recursively from %s to %s excluding %s", src, dst, excludes)

    for entry in _walk(src, not copy_ignored_test_data, src / ".dinghyignore", excludes):
        info = entry.stat()
        relative = entry.relative_to(src)

        if relative == Path(".") and stat.S_ISREG(info.st_mode):
            dst.parent.mkdir(parents=True, exist_ok=True)
            target = dst
        else:
            target = dst / relative

        if stat.S_ISDIR(info.st_mode):
            if target.is_file():
                target.unlink()
            target.mkdir(parents=True, exist_ok=True)
        elif stat.S_ISREG(info.st_mode):
            if target.exists() and not target.is_file():
                shutil.rmtree(target)
            if _needs_copy(info, target):
                try:
                    copy_and_sync_file(entry, target)
                except (OSError, DinghyError) as error:
                    raise DinghyError(f"Syncing {entry} and {target}") from error
            else:
                log.debug("%s is already up-to-date", target)
        else:
            log.debug("ignored %s", relative)


def _needs_copy(info: os.stat_result, target: Path) -> bool:
    if not target.exists():
        return True
    target_info = target.stat()
    return (
        target_info.st_size != info.st_size
        or target_info.st_mtime_ns < info.st_mtime_ns
    )