"""Configuration files: discovery, parsing and merging."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from dinghy.utils import DinghyError

log = logging.getLogger(__name__)

_T = TypeVar("_T")

CONFIG_FILE_NAMES = ("dinghy.toml", ".dinghy.toml")


def _require(data: Mapping[str, Any], key: str, kind: type, context: str) -> Any:
    if key not in data:
        raise DinghyError(f"missing field `{key}` in {context}")
    return _check(data[key], key, kind, context)


def _optional(data: Mapping[str, Any], key: str, kind: type, context: str) -> Any:
    value = data.get(key)
    if value is None:
        return None
    return _check(value, key, kind, context)


def _check(value: Any, key: str, kind: type, context: str) -> Any:
    wrong = not isinstance(value, kind) or (kind is int and isinstance(value, bool))
    if wrong:
        raise DinghyError(
            f"invalid type for `{key}` in {context}: expected {kind.__name__}"
        )
    return value


def _string_map(value: Any, key: str, context: str) -> dict[str, str]:
    _check(value, key, dict, context)
    for name, item in value.items():
        _check(item, f"{key}.{name}", str, context)
    return dict(value)


def _table(
    data: Mapping[str, Any], key: str, build: Callable[[Any], _T], context: str
) -> dict[str, _T] | None:
    value = data.get(key)
    if value is None:
        return None
    _check(value, key, dict, context)
    return {name: build(item) for name, item in sorted(value.items())}


def _as_dict(data: Any, context: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise DinghyError(f"invalid type for {context}: expected a table")
    return data


@dataclass
class TestData:
    """A test data entry resolved against the file it was declared in."""

    __test__ = False

    id: str
    base: Path
    source: str
    target: str
    copy_git_ignored: bool


@dataclass
class TestDataConfiguration:
    """A test data entry as written in a configuration file."""

    __test__ = False

    copy_git_ignored: bool
    source: str
    target: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> TestDataConfiguration:
        """Accept either a plain path or a detailed table."""
        if isinstance(value, str):
            return cls(copy_git_ignored=False, source=value, target=None)
        if isinstance(value, Mapping):
            context = "test data"
            return cls(
                copy_git_ignored=_require(value, "copy_git_ignored", bool, context),
                source=_require(value, "source", str, context),
                target=_optional(value, "target", str, context),
            )
        raise DinghyError(
            'invalid test data: expected a path like "tests/my_test_data" or a '
            'detailed dependency like { source = "tests/my_test_data", '
            "copy_git_ignored = true }"
        )


@dataclass
class OverlayConfiguration:
    """An overlay declared for a platform."""

    path: str
    scope: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OverlayConfiguration:
        context = "overlay"
        data = _as_dict(data, context)
        return cls(
            path=_require(data, "path", str, context),
            scope=_optional(data, "scope", str, context),
        )


@dataclass
class PlatformConfiguration:
    """Settings for a cross-compilation platform."""

    deb_multiarch: str | None = None
    env: dict[str, str] | None = None
    overlays: dict[str, OverlayConfiguration] | None = None
    rustc_triple: str | None = None
    sysroot: str | None = None
    toolchain: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlatformConfiguration:
        context = "platform"
        data = _as_dict(data, context)
        env = data.get("env")
        return cls(
            deb_multiarch=_optional(data, "deb_multiarch", str, context),
            env=None if env is None else _string_map(env, "env", context),
            overlays=_table(data, "overlays", OverlayConfiguration.from_dict, context),
            rustc_triple=_optional(data, "rustc_triple", str, context),
            sysroot=_optional(data, "sysroot", str, context),
            toolchain=_optional(data, "toolchain", str, context),
        )

    def env_items(self) -> list[tuple[str, str]]:
        """Return the configured environment variables as pairs."""
        return list((self.env or {}).items())


@dataclass
class SshDeviceConfiguration:
    """A device reached over ssh."""

    hostname: str
    username: str
    port: int | None = None
    path: str | None = None
    target: str | None = None
    toolchain: str | None = None
    platform: str | None = None
    remote_shell_vars: dict[str, str] = field(default_factory=dict)
    install_adhoc_rsync_local_path: str | None = None
    use_legacy_scp_protocol_for_adhoc_rsync_copy: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SshDeviceConfiguration:
        context = "ssh device"
        data = _as_dict(data, context)
        port = _optional(data, "port", int, context)
        if port is not None and not 0 <= port <= 0xFFFF:
            raise DinghyError(f"invalid port {port} in {context}")
        shell_vars = data.get("remote_shell_vars")
        return cls(
            hostname=_require(data, "hostname", str, context),
            username=_require(data, "username", str, context),
            port=port,
            path=_optional(data, "path", str, context),
            target=_optional(data, "target", str, context),
            toolchain=_optional(data, "toolchain", str, context),
            platform=_optional(data, "platform", str, context),
            remote_shell_vars=(
                {}
                if shell_vars is None
                else _string_map(shell_vars, "remote_shell_vars", context)
            ),
            install_adhoc_rsync_local_path=_optional(
                data, "install_adhoc_rsync_local_path", str, context
            ),
            use_legacy_scp_protocol_for_adhoc_rsync_copy=_optional(
                data, "use_legacy_scp_protocol_for_adhoc_rsync_copy", bool, context
            ),
        )


@dataclass
class ScriptDeviceConfiguration:
    """A device driven by a runner script."""

    path: str
    platform: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScriptDeviceConfiguration:
        context = "script device"
        data = _as_dict(data, context)
        return cls(
            path=_require(data, "path", str, context),
            platform=_optional(data, "platform", str, context),
        )


@dataclass
class _ConfigurationFileContent:
    platforms: dict[str, PlatformConfiguration] | None = None
    ssh_devices: dict[str, SshDeviceConfiguration] | None = None
    script_devices: dict[str, ScriptDeviceConfiguration] | None = None
    test_data: dict[str, TestDataConfiguration] | None = None
    skip_source_copy: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> _ConfigurationFileContent:
        context = "configuration"
        return cls(
            platforms=_table(data, "platforms", PlatformConfiguration.from_dict, context),
            ssh_devices=_table(
                data, "ssh_devices", SshDeviceConfiguration.from_dict, context
            ),
            script_devices=_table(
                data, "script_devices", ScriptDeviceConfiguration.from_dict, context
            ),
            test_data=_table(data, "test_data", TestDataConfiguration.from_value, context),
            skip_source_copy=_optional(data, "skip_source_copy", bool, context),
        )


def _merged(current: dict[str, _T], extra: dict[str, _T] | None) -> dict[str, _T]:
    return dict(sorted({**current, **(extra or {})}.items()))


@dataclass
class Configuration:
    """The merged configuration of every file found."""

    platforms: dict[str, PlatformConfiguration] = field(default_factory=dict)
    ssh_devices: dict[str, SshDeviceConfiguration] = field(default_factory=dict)
    script_devices: dict[str, ScriptDeviceConfiguration] = field(default_factory=dict)
    test_data: list[TestData] = field(default_factory=list)
    skip_source_copy: bool = False

    def merge(self, file: str | os.PathLike) -> None:
        """Read a configuration file and fold it into this configuration."""
        file = Path(file)
        other = read_config_file(file)
        self.platforms = _merged(self.platforms, other.platforms)
        self.ssh_devices = _merged(self.ssh_devices, other.ssh_devices)
        self.script_devices = _merged(self.script_devices, other.script_devices)
        for test_data_id, source in (other.test_data or {}).items():
            self.test_data.append(
                TestData(
                    id=test_data_id,
                    base=file,
                    source=source.source,
                    target=source.target if source.target is not None else source.source,
                    copy_git_ignored=source.copy_git_ignored,
                )
            )
        if other.skip_source_copy is not None:
            self.skip_source_copy = other.skip_source_copy


def read_config_file(file: str | os.PathLike) -> _ConfigurationFileContent:
    """Parse one configuration file."""
    with open(file, "rb") as handle:
        try:
            data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as error:
            raise DinghyError(f"Could not parse {os.fspath(file)}: {error}") from error
    return _ConfigurationFileContent.from_dict(data)


def _candidates(directory: Path) -> list[Path]:
    return [
        directory / "dinghy.toml",
        directory / ".dinghy.toml",
        directory / ".dinghy" / "dinghy.toml",
        directory / ".dinghy" / ".dinghy.toml",
    ]


def _home_dir() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None


def dinghy_config(
    directory: str | os.PathLike, home: str | os.PathLike | None = None
) -> Configuration:
    """Load every configuration file from ``directory`` up to the root, then home."""
    conf = Configuration()
    directory = Path(directory)
    home_path = Path(home) if home is not None else _home_dir()

    files_to_try: list[Path] = []
    current = directory
    while current.parent != current:
        files_to_try.extend(_candidates(current))
        current = current.parent
    files_to_try.append(current / ".dinghy.toml")
    if home_path is not None and not directory.is_relative_to(home_path):
        files_to_try.extend(_candidates(home_path))

    for file in files_to_try:
        if file.exists():
            log.debug("Loading configuration from %s", file)
            conf.merge(file)
        else:
            log.debug("No configuration found at %s", file)

    log.debug("Configuration: %r", conf)
    return conf