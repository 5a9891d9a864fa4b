"""Host and cross-compilation platforms, and stripping of binaries."""

from __future__ import annotations

import dataclasses
import functools
import logging
import os
import platform as _platform_info
import shutil
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dinghy.config import Configuration, PlatformConfiguration
from dinghy.core import Build, Device, Platform, PlatformManager, Runnable
from dinghy.toolchain import ToolchainConfig
from dinghy.utils import DinghyError, file_name_as_str, log_invocation, path_to_str

log = logging.getLogger(__name__)


def strip_runnable(runnable: Runnable, command: Sequence[str | os.PathLike]) -> Runnable:
    """Strip a copy of the runnable's executable and return a runnable pointing at it."""
    exe = Path(runnable.exe)
    exe_name = file_name_as_str(exe)
    stripped = dataclasses.replace(runnable, exe=exe.parent / f"{exe_name}-stripped")

    try:
        shutil.copy(exe, stripped.exe)
    except OSError as error:
        raise DinghyError(f"Could not copy {exe} to {stripped.exe}") from error

    full_command = [*command, os.fspath(stripped.exe)]
    log.debug("Running command %s", full_command)
    log_invocation(full_command, 2)
    try:
        result = subprocess.run(full_command, capture_output=True, check=False)
    except OSError as error:
        raise DinghyError(f"Could not run {full_command[0]}") from error
    if result.returncode != 0:
        output = result.stdout.decode("utf-8", errors="replace")
        raise DinghyError(f"Error while stripping {stripped.exe}\nError: {output}")

    log.debug(
        "%s unstripped size = %d and stripped size = %d",
        exe,
        exe.stat().st_size,
        Path(stripped.exe).stat().st_size,
    )
    return stripped


def find_sysroot(toolchain_path: str | os.PathLike) -> Path | None:
    """Find ``sysroot`` directly in the toolchain or in one of its sub-directories."""
    toolchain = Path(toolchain_path)
    immediate = toolchain / "sysroot"
    if immediate.is_dir():
        return Path(path_to_str(immediate))
    try:
        subdirs = sorted(toolchain.iterdir())
    except OSError as error:
        raise DinghyError(f"Could not read toolchain directory {toolchain}") from error
    for subdir in subdirs:
        candidate = subdir / "sysroot"
        if candidate.is_dir():
            return Path(path_to_str(candidate))
    return None


@dataclass
class RegularPlatform(Platform):
    """A cross-compilation platform backed by a gcc toolchain."""

    configuration: PlatformConfiguration
    id: str
    toolchain: ToolchainConfig

    @classmethod
    def create(
        cls,
        configuration: PlatformConfiguration,
        platform_id: str,
        rustc_triple: str,
        toolchain_path: str | os.PathLike,
    ) -> RegularPlatform:
        """Build a platform from a configuration and a toolchain directory."""
        prefix = configuration.deb_multiarch
        if prefix is not None:
            return cls(
                configuration=configuration,
                id=platform_id,
                toolchain=ToolchainConfig(
                    bin_dir=Path("/usr/bin"),
                    root=Path("/"),
                    rustc_triple=rustc_triple,
                    sysroot=Path("/"),
                    cc="gcc",
                    cxx="c++",
                    binutils_prefix=prefix,
                    cc_prefix=prefix,
                ),
            )

        toolchain_root = Path(toolchain_path)
        bin_path = toolchain_root / "bin"
        try:
            names = sorted(entry.name for entry in os.scandir(bin_path))
        except OSError as error:
            raise DinghyError(f"Could not read {bin_path}") from error

        gcc = next(
            (name for name in names if name.endswith(("-gcc", "-gcc.exe"))), None
        )
        if gcc is None:
            raise DinghyError("no bin/*-gcc found in toolchain")
        tc_triple = gcc.replace(".exe", "").replace("-gcc", "")

        return cls(
            configuration=configuration,
            id=platform_id,
            toolchain=ToolchainConfig(
                bin_dir=bin_path,
                root=toolchain_root,
                rustc_triple=rustc_triple,
                sysroot=find_sysroot(toolchain_root),
                cc="gcc",
                cxx="c++",
                binutils_prefix=tc_triple,
                cc_prefix=tc_triple,
            ),
        )

    def __str__(self) -> str:
        return self.id

    def is_compatible_with(self, device: Device) -> bool:
        return device.is_compatible_with_regular_platform(self)

    def is_host(self) -> bool:
        return False

    def rustc_triple(self) -> str:
        return self.toolchain.rustc_triple

    def strip(self, build: Build) -> None:
        build.runnable = strip_runnable(
            build.runnable, [self.toolchain.binutils_executable("strip")]
        )

    def sysroot(self) -> Path | None:
        return self.toolchain.sysroot


@functools.lru_cache(maxsize=1)
def _host_triple() -> str:
    machine = _platform_info.machine().lower()
    arch = {"amd64": "x86_64", "x64": "x86_64", "arm64": "aarch64"}.get(
        machine, machine or "unknown"
    )
    if sys.platform == "darwin":
        return f"{arch}-apple-darwin"
    if sys.platform.startswith(("win", "cygwin")):
        return f"{arch}-pc-windows-msvc"
    if sys.platform.startswith("freebsd"):
        return f"{arch}-unknown-freebsd"
    return f"{arch}-unknown-linux-gnu"


@dataclass
class HostPlatform(Platform):
    """The machine the tool runs on."""

    configuration: PlatformConfiguration = field(default_factory=PlatformConfiguration)
    id: str = "host"

    def __str__(self) -> str:
        return self.id

    def is_compatible_with(self, device: Device) -> bool:
        return device.is_compatible_with_host_platform(self)

    def is_host(self) -> bool:
        return True

    def rustc_triple(self) -> str:
        return _host_triple()

    def strip(self, build: Build) -> None:
        log.info("Stripping %s", build.runnable.exe)
        build.runnable = strip_runnable(build.runnable, ["strip"])

    def sysroot(self) -> Path | None:
        return Path("/")


@dataclass
class HostManager(PlatformManager):
    """Provides the host platform, configured by the ``host`` platform entry."""

    host_conf: PlatformConfiguration

    @classmethod
    def probe(cls, conf: Configuration) -> HostManager:
        """Create the manager from the configuration's ``host`` entry, if any."""
        host_conf = conf.platforms.get("host")
        return cls(
            host_conf=dataclasses.replace(host_conf)
            if host_conf is not None
            else PlatformConfiguration()
        )

    def devices(self) -> list[Device]:
        return []

    def platforms(self) -> list[Platform]:
        return [HostPlatform(configuration=dataclasses.replace(self.host_conf))]