"""Discovery of every available device and platform."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dinghy.config import Configuration
from dinghy.core import Device, Platform, PlatformManager
from dinghy.platforms import HostManager, RegularPlatform
from dinghy.plugin import PluginManager
from dinghy.script import ScriptDeviceManager
from dinghy.ssh import SshDeviceManager
from dinghy.utils import DinghyError

log = logging.getLogger(__name__)


def _home_dir() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None


class Dinghy:
    """The devices and platforms found from the configuration and the plugins."""

    def __init__(
        self, devices: list[Device], platforms: list[tuple[str, Platform]]
    ) -> None:
        self._devices = list(devices)
        self._platforms = list(platforms)

    @classmethod
    def probe(
        cls, conf: Configuration, home: str | os.PathLike | None = None
    ) -> Dinghy:
        """Query every platform manager and assemble the configured platforms."""
        home_path = Path(home) if home is not None else _home_dir()

        managers: list[PlatformManager] = [
            HostManager.probe(conf),
            ScriptDeviceManager(conf),
            SshDeviceManager(conf),
        ]
        plugins = PluginManager.probe(conf)
        if plugins is not None:
            managers.append(plugins)

        devices: list[Device] = []
        platforms: list[tuple[str, Platform]] = []
        for manager in managers:
            try:
                devices.extend(manager.devices())
            except DinghyError as error:
                raise DinghyError("Could not list devices") from error
            try:
                platforms.extend((pf.id, pf) for pf in manager.platforms())
            except DinghyError as error:
                raise DinghyError("Could not list platforms") from error

        for platform_name, platform_conf in conf.platforms.items():
            if platform_name == "host":
                continue
            if platform_conf.rustc_triple is None:
                raise DinghyError(f"Platform {platform_name} has no rustc_triple")
            if platform_conf.toolchain is not None:
                toolchain = Path(platform_conf.toolchain)
            elif home_path is not None:
                toolchain = home_path / ".dinghy" / "toolchain" / platform_name
            else:
                raise DinghyError(f"Toolchain missing for platform {platform_name}")
            try:
                platform = RegularPlatform.create(
                    platform_conf, platform_name, platform_conf.rustc_triple, toolchain
                )
            except DinghyError as error:
                raise DinghyError(
                    f"Could not assemble platform {platform_name}"
                ) from error
            platforms.append((platform.id, platform))

        return cls(devices, platforms)

    def devices(self) -> list[Device]:
        """Return every device found."""
        return list(self._devices)

    def host_platform(self) -> Platform:
        """Return the host platform, which is always found first."""
        return self._platforms[0][1]

    def platforms(self) -> list[Platform]:
        """Return every platform found."""
        return [platform for _, platform in self._platforms]

    def platform_by_name(self, platform_name_filter: str) -> Platform | None:
        """Return the first platform with the given id, or None."""
        return next(
            (
                platform
                for name, platform in self._platforms
                if name == platform_name_filter
            ),
            None,
        )