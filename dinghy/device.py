"""Assembling the bundle that is shipped to a remote device."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from dinghy.core import Build, BuildBundle
from dinghy.project import Project, rec_copy, rec_copy_excl
from dinghy.utils import DinghyError, copy_and_sync_file

log = logging.getLogger(__name__)

_SYSROOT_LIB_TAIL = ("sysroot", "usr", "lib")


def _is_sysroot_library(path: Path) -> bool:
    in_sysroot = any(
        ancestor.parts[-3:] == _SYSROOT_LIB_TAIL for ancestor in (path, *path.parents)
    )
    return (
        in_sysroot
        and path.name.lower() != "libc++_shared.so"
        and "android" not in str(path)
    )


def _copy(src: Path, dst: Path, shown_dst: Path) -> None:
    try:
        copy_and_sync_file(src, dst)
    except (OSError, DinghyError) as error:
        raise DinghyError(f"Couldn't copy {src} to {shown_dst}") from error


def make_remote_app(project: Project, build: Build) -> BuildBundle:
    """Assemble the bundle for ``build`` under the build's target directory."""
    return make_remote_app_with_name(project, build, None)


def make_remote_app_with_name(
    project: Project, build: Build, bundle_name: str | None
) -> BuildBundle:
    """Assemble the bundle for ``build``, optionally in a named sub-directory."""
    runnable = build.runnable
    root_dir = Path(build.target_path) / "dinghy"
    bundle_path = root_dir / runnable.package_name
    if bundle_name is not None:
        bundle_path = bundle_path / bundle_name
    bundle_libs_path = root_dir / "overlay"
    bundle_exe_path = bundle_path / f"_dinghy_{runnable.id}"

    log.debug("Removing previous bundle %s", bundle_path)
    shutil.rmtree(bundle_path, ignore_errors=True)
    shutil.rmtree(bundle_libs_path, ignore_errors=True)

    log.debug("Making bundle %s", bundle_path)
    bundle_path.mkdir(parents=True, exist_ok=True)
    bundle_libs_path.mkdir(parents=True, exist_ok=True)

    exe = Path(runnable.exe)
    log.debug("Copying exe %s to bundle %s", exe, bundle_exe_path)
    _copy(exe, bundle_exe_path, bundle_exe_path)

    log.debug("Copying dynamic libs to bundle")
    for src_lib_path in map(Path, build.dynamic_libraries):
        if not src_lib_path.name:
            raise DinghyError(f"Invalid file name {src_lib_path}")
        target_lib_path = bundle_libs_path / src_lib_path.name
        if _is_sysroot_library(src_lib_path):
            log.debug(
                "Dynamic lib %s will not be copied as it is a sysroot library",
                src_lib_path,
            )
            continue
        log.debug("Copying dynamic lib %s to %s", src_lib_path, target_lib_path)
        _copy(src_lib_path, target_lib_path, target_lib_path)

    for file_in_run_args in map(Path, build.files_in_run_args):
        if not file_in_run_args.name:
            raise DinghyError("no file name")
        dst = bundle_path / file_in_run_args.name
        if file_in_run_args.is_dir():
            rec_copy(file_in_run_args, dst, True)
        else:
            _copy(file_in_run_args, dst, root_dir)

    source = Path(runnable.source)
    if runnable.skip_source_copy:
        log.debug("Skipping source copy to bundle %s", bundle_path)
    else:
        log.debug("Copying src %s to bundle %s", source, bundle_path)
        rec_copy_excl(source, bundle_path, False, [source / "target"])

    log.debug("Copying test_data to bundle %s", bundle_path)
    project.copy_test_data(bundle_path)

    return BuildBundle(
        id=runnable.id,
        bundle_dir=bundle_path,
        bundle_exe=bundle_exe_path,
        lib_dir=bundle_libs_path,
        root_dir=root_dir,
        app_id=None,
    )