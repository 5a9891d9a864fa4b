"""Core data types shared by devices, platforms and builds."""

from __future__ import annotations

import dataclasses
import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from dinghy.utils import DinghyError, normalize_path, path_to_str

if TYPE_CHECKING:
    from dinghy.project import Project


@dataclass
class SetupArgs:
    """Options given to the tool that a runner invocation must repeat."""

    verbosity: int = 0
    forced_overlays: list[str] = field(default_factory=list)
    envs: list[str] = field(default_factory=list)
    cleanup: bool = False
    strip: bool = False
    device_id: str | None = None

    def get_runner_command(
        self, platform_id: str, exe: str | os.PathLike | None = None
    ) -> str:
        """Build the command line that runs a binary through the ``runner`` subcommand."""
        flags: list[str] = []
        if self.verbosity > 0:
            flags.extend(["-v"] * self.verbosity)
        if self.verbosity < 0:
            flags.extend(["-q"] * -self.verbosity)
        if self.cleanup:
            flags.append("--cleanup")
        if self.strip:
            flags.append("--strip")
        if self.device_id is not None:
            flags.append(f"-d {self.device_id}")
        flags.extend(f"-e {env}" for env in self.envs)

        extra_args = "".join(f"{flag} " for flag in flags)
        executable = Path(exe) if exe is not None else Path(sys.argv[0]).resolve()
        return f"{path_to_str(executable)} -p {platform_id} {extra_args}runner --"


@dataclass
class Runnable:
    """A binary produced by a build, with the sources it came from."""

    id: str = ""
    package_name: str = ""
    exe: Path = field(default_factory=Path)
    source: Path = field(default_factory=Path)
    skip_source_copy: bool = False


@dataclass
class Build:
    """A built runnable together with what it needs to run."""

    setup_args: SetupArgs
    runnable: Runnable
    target_path: Path
    dynamic_libraries: list[Path] = field(default_factory=list)
    files_in_run_args: list[Path] = field(default_factory=list)


@dataclass
class BuildBundle:
    """The directory layout of an application prepared for a device."""

    id: str = ""
    bundle_dir: Path = field(default_factory=Path)
    bundle_exe: Path = field(default_factory=Path)
    lib_dir: Path = field(default_factory=Path)
    root_dir: Path = field(default_factory=Path)
    app_id: str | None = None

    def replace_prefix_with(self, path: str | os.PathLike) -> BuildBundle:
        """Return a copy of the bundle moved from ``root_dir`` to ``path``."""
        prefix = Path(path)

        def moved(item: Path) -> Path:
            try:
                relative = Path(item).relative_to(self.root_dir)
            except ValueError as error:
                raise DinghyError(
                    f"{item} is not inside the bundle root {self.root_dir}"
                ) from error
            return normalize_path(prefix / relative)

        return dataclasses.replace(
            self,
            bundle_dir=moved(self.bundle_dir),
            bundle_exe=moved(self.bundle_exe),
            lib_dir=moved(self.lib_dir),
            root_dir=prefix,
        )


class Device(ABC):
    """A device that applications can be installed on and run."""

    id: str

    @property
    def name(self) -> str:
        """The device's display name."""
        return self.id

    @abstractmethod
    def clean_app(self, build_bundle: BuildBundle) -> None:
        """Remove an installed application from the device."""

    @abstractmethod
    def run_app(
        self,
        project: Project,
        build: Build,
        args: Sequence[str],
        envs: Sequence[str],
    ) -> BuildBundle:
        """Install and run a build on the device."""

    def is_compatible_with_regular_platform(self, platform: Platform) -> bool:
        """Tell whether builds for a cross-compilation platform run here."""
        return False

    def is_compatible_with_host_platform(self, platform: Platform) -> bool:
        """Tell whether builds for the host platform run here."""
        return False


class Platform(ABC):
    """A compilation target."""

    id: str

    def __str__(self) -> str:
        return self.id

    @abstractmethod
    def is_compatible_with(self, device: Device) -> bool:
        """Tell whether builds for this platform run on ``device``."""

    @abstractmethod
    def is_host(self) -> bool:
        """Tell whether this is the machine's own platform."""

    @abstractmethod
    def rustc_triple(self) -> str:
        """Return the compiler target triple."""

    @abstractmethod
    def strip(self, build: Build) -> None:
        """Replace the build's runnable with a stripped copy."""

    @abstractmethod
    def sysroot(self) -> Path | None:
        """Return the system root of the target, if any."""


class PlatformManager(ABC):
    """A source of devices and platforms."""

    @abstractmethod
    def devices(self) -> list[Device]:
        """List the devices this manager knows."""

    @abstractmethod
    def platforms(self) -> list[Platform]:
        """List the platforms this manager knows."""