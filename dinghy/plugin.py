"""Devices and platforms supplied by ``cargo-dinghy-*`` executables found on the PATH.

A plugin answers two sub-commands. ``devices`` prints a TOML document with
optional ``ssh_devices`` and ``script_devices`` tables. ``platforms`` prints a
TOML document mapping platform names to platform settings.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import subprocess
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from dinghy.config import (
    Configuration,
    PlatformConfiguration,
    ScriptDeviceConfiguration,
    SshDeviceConfiguration,
)
from dinghy.core import Device, Platform, PlatformManager
from dinghy.platforms import RegularPlatform
from dinghy.script import ScriptDevice
from dinghy.ssh import SshDevice
from dinghy.utils import DinghyError

log = logging.getLogger(__name__)

PLUGIN_PREFIX = "cargo-dinghy-"

_T = TypeVar("_T")


def _section(
    data: Mapping[str, Any], key: str, build: Callable[[Any], _T]
) -> dict[str, _T] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise DinghyError(f"invalid type for `{key}` in plugin output: expected a table")
    return {name: build(item) for name, item in sorted(value.items())}


@dataclass
class DevicePluginOutput:
    """The devices a plugin reports."""

    ssh_devices: dict[str, SshDeviceConfiguration] | None = None
    script_devices: dict[str, ScriptDeviceConfiguration] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DevicePluginOutput:
        """Build the output from a parsed TOML document."""
        if not isinstance(data, Mapping):
            raise DinghyError("invalid plugin output: expected a table")
        return cls(
            ssh_devices=_section(data, "ssh_devices", SshDeviceConfiguration.from_dict),
            script_devices=_section(
                data, "script_devices", ScriptDeviceConfiguration.from_dict
            ),
        )


def _run_plugin(plugin: str, subcommand: str) -> dict[str, Any]:
    try:
        result = subprocess.run([plugin, subcommand], capture_output=True, check=False)
    except OSError as error:
        raise DinghyError(f"could not run plugin {plugin!r}") from error
    if result.returncode != 0:
        raise DinghyError(
            f"failed to get {subcommand} from auto detected script provider: "
            f"{plugin!r}, non success return code"
        )
    try:
        text = result.stdout.decode("utf-8")
    except UnicodeDecodeError as error:
        raise DinghyError(
            f"Failed to parse string output from {plugin} {subcommand}"
        ) from error
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as error:
        raise DinghyError(
            f"Failed to parse toml output from {plugin} {subcommand}"
        ) from error


def get_devices_from_plugin(plugin: str) -> DevicePluginOutput:
    """Ask a plugin for its devices."""
    return DevicePluginOutput.from_dict(_run_plugin(plugin, "devices"))


def get_platforms_from_plugin(plugin: str) -> dict[str, Platform]:
    """Ask a plugin for its platforms, keyed and ordered by name."""
    data = _run_plugin(plugin, "platforms")
    platforms: dict[str, Platform] = {}
    for name, raw in sorted(data.items()):
        conf = PlatformConfiguration.from_dict(raw)
        if conf.rustc_triple is None:
            raise DinghyError(f"Platform {name} from {plugin} has no rustc_triple")
        if conf.toolchain is None:
            raise DinghyError(f"Toolchain missing for platform {name} from {plugin}")
        platforms[name] = RegularPlatform.create(
            conf, name, conf.rustc_triple, conf.toolchain
        )
    return platforms


def _is_executable_file(path: str) -> bool:
    try:
        info = os.stat(path)
    except OSError:
        return False
    return stat.S_ISREG(info.st_mode) and bool(info.st_mode & 0o111)


def auto_detect_plugins(search_path: str | None = None) -> list[str]:
    """Return the sorted names of executables on the search path named ``cargo-dinghy-*``.

    The search path defaults to the ``PATH`` environment variable.
    """
    paths = search_path if search_path is not None else os.environ.get("PATH")
    if paths is None:
        return []
    binaries: list[str] = []
    for directory in paths.split(os.pathsep):
        try:
            entries = list(os.scandir(directory or "."))
        except OSError:
            continue
        binaries.extend(
            entry.name
            for entry in entries
            if entry.name.startswith(PLUGIN_PREFIX) and _is_executable_file(entry.path)
        )
    return sorted(binaries)


@dataclass
class PluginManager(PlatformManager):
    """Collects devices and platforms from every detected plugin."""

    conf: Configuration
    auto_detected_plugins: list[str]
    search_path: str | None = None

    @classmethod
    def probe(
        cls, conf: Configuration, search_path: str | None = None
    ) -> PluginManager | None:
        """Create the manager, or return None when no plugin is found."""
        plugins = auto_detect_plugins(search_path)
        if not plugins:
            log.debug("No auto-detected plugins found")
            return None
        log.debug("Auto-detected plugins: %s", plugins)
        return cls(conf=conf, auto_detected_plugins=plugins, search_path=search_path)

    def _command(self, plugin: str) -> str:
        return shutil.which(plugin, path=self.search_path) or plugin

    def _script_devices(
        self, provider: str, devices: dict[str, ScriptDeviceConfiguration]
    ) -> list[Device]:
        result: list[Device] = []
        for device_id, device_conf in devices.items():
            if device_id in self.conf.script_devices:
                log.debug(
                    "ignoring script device %s from %s as it was already registered "
                    "in configuration",
                    device_id,
                    provider,
                )
                continue
            log.debug("registering script device %s from %s", device_id, provider)
            result.append(ScriptDevice(id=device_id, conf=device_conf))
        return result

    def _ssh_devices(
        self, provider: str, devices: dict[str, SshDeviceConfiguration]
    ) -> list[Device]:
        result: list[Device] = []
        for device_id, device_conf in devices.items():
            if device_id in self.conf.script_devices:
                log.debug(
                    "ignoring ssh device %s from %s as it was already registered "
                    "in configuration",
                    device_id,
                    provider,
                )
                continue
            log.debug("registering ssh device %s from %s", device_id, provider)
            result.append(SshDevice(id=device_id, conf=device_conf))
        return result

    def devices(self) -> list[Device]:
        result: list[Device] = []
        for provider in self.auto_detected_plugins:
            try:
                output = get_devices_from_plugin(self._command(provider))
            except DinghyError as error:
                log.debug(
                    "failed to get devices from auto detected script provider: %s, %r",
                    provider,
                    error,
                )
                continue
            if output.script_devices is not None:
                result.extend(self._script_devices(provider, output.script_devices))
            if output.ssh_devices is not None:
                result.extend(self._ssh_devices(provider, output.ssh_devices))
        return result

    def platforms(self) -> list[Platform]:
        found: dict[str, Platform] = {}
        for provider in self.auto_detected_plugins:
            try:
                platforms = get_platforms_from_plugin(self._command(provider))
            except DinghyError as error:
                log.debug(
                    "failed to get platforms from auto detected script provider: %s, %r",
                    provider,
                    error,
                )
                continue
            for platform_id, platform in platforms.items():
                if platform_id in found or platform_id in self.conf.platforms:
                    log.debug(
                        "ignoring platform %s from plugin %s as it was already registered",
                        platform_id,
                        provider,
                    )
                    continue
                log.debug("registering platform %s from %s", platform_id, provider)
                found[platform_id] = platform
        return [found[platform_id] for platform_id in sorted(found)]