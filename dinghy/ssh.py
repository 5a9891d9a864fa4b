"""Devices reached over ssh, with applications copied by rsync."""

from __future__ import annotations

import dataclasses
import logging
import os
import re
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dinghy.config import Configuration, SshDeviceConfiguration
from dinghy.core import Build, BuildBundle, Device, Platform, PlatformManager
from dinghy.device import make_remote_app
from dinghy.project import Project
from dinghy.utils import (
    DinghyError,
    get_current_verbosity,
    log_invocation,
    path_to_str,
    user_facing_log,
)

log = logging.getLogger(__name__)

_VARIABLE = re.compile(r"\$(?:\{([^}]*)\}|([A-Za-z0-9_]+))")
_SAFE_CHARS = frozenset("-_=/,.+")


def shell_expand(text: str, variables: Mapping[str, str]) -> str:
    """Expand ``$NAME``, ``${NAME}`` and a leading ``~`` from ``variables``.

    Unknown variables are left as written; ``~`` uses the ``HOME`` entry.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        value = variables.get(name)
        return match.group(0) if value is None else value

    expanded = _VARIABLE.sub(replace, text)
    if expanded == "~" or expanded.startswith("~/"):
        home = variables.get("HOME")
        if home is not None:
            expanded = home + expanded[1:]
    return expanded


def _shell_escape(text: str) -> str:
    if text and all((c.isascii() and c.isalnum()) or c in _SAFE_CHARS for c in text):
        return text
    body = "".join(f"'\\{c}'" if c in "'!" else c for c in text)
    return f"'{body}'"


def _run(command: Sequence[str | os.PathLike], verbosity: int, **kwargs: Any) -> int:
    log_invocation(command, verbosity)
    argv = [os.fspath(arg) for arg in command]
    try:
        return subprocess.run(argv, check=False, **kwargs).returncode
    except OSError as error:
        raise DinghyError(f"failed to run {argv!r}") from error


@dataclass(repr=False)
class SshDevice(Device):
    """A remote machine reached with ssh."""

    id: str
    conf: SshDeviceConfiguration

    def __repr__(self) -> str:
        port = "none" if self.conf.port is None else str(self.conf.port)
        return (
            f'Ssh {{ "id": "{self.id}", "hostname": "{self.conf.hostname}", '
            f'"username": "{self.conf.username}", "port": "{port}" }}'
        )

    def __str__(self) -> str:
        return f"{self.id} ({self.conf.hostname})"

    @property
    def _login(self) -> str:
        return f"{self.conf.username}@{self.conf.hostname}"

    @property
    def _remote_root(self) -> Path:
        return Path(self.conf.path if self.conf.path is not None else "/tmp") / "dinghy"

    def ssh_command(self) -> list[str]:
        """Return the ssh invocation that reaches the device."""
        command = ["ssh"]
        if self.conf.port is not None:
            command += ["-p", str(self.conf.port)]
        if sys.stdout.isatty():
            command += ["-t", "-o", "LogLevel=QUIET"]
        command.append(self._login)
        return command

    def sync_rsync(self) -> str:
        """Return the remote rsync path, copying an ad-hoc rsync there if configured."""
        local_rsync = self.conf.install_adhoc_rsync_local_path
        if local_rsync is None:
            return "/usr/bin/rsync"

        rsync_path = path_to_str(self._remote_root / "rsync")
        check = [*self.ssh_command(), "[", "-f", rsync_path, "]"]
        if _run(check, 2) == 0:
            log.debug("ad-hoc rsync already present on device, skipping copy")
            return rsync_path

        command = ["scp"]
        if self.conf.use_legacy_scp_protocol_for_adhoc_rsync_copy:
            command.append("-O")
        command.append("-q")
        if self.conf.port is not None:
            command += ["-P", str(self.conf.port)]
        command += [local_rsync, f"{self._login}:{rsync_path}"]
        log.debug("Running %s", command)
        if _run(command, 3) != 0:
            raise DinghyError(f"Error copying rsync binary ({command!r})")
        return rsync_path

    def sync(self, from_path: str | os.PathLike, to_path: str | os.PathLike) -> None:
        """Mirror a local directory's contents into a remote directory."""
        try:
            rsync = self.sync_rsync()
        except DinghyError as error:
            raise DinghyError(f"Problem with rsync on the target: {error!r}") from error

        command = ["rsync", f"--rsync-path={rsync}", "-a", "-v"]
        if self.conf.port is not None:
            command += ["-e", f"ssh -p {self.conf.port}"]
        command += [
            f"{path_to_str(from_path)}/",
            f"{self._login}:{path_to_str(to_path)}/",
        ]
        quiet = {}
        if not log.isEnabledFor(logging.DEBUG):
            quiet = {"stdout": subprocess.DEVNULL, "stderr": subprocess.DEVNULL}
        log.debug("Running %s", command)
        if _run(command, 1, **quiet) != 0:
            raise DinghyError(f"Error syncing ssh directory ({command!r})")

    def to_remote_bundle(self, build_bundle: BuildBundle) -> BuildBundle:
        """Return the bundle as laid out on the device."""
        return build_bundle.replace_prefix_with(self._remote_root)

    def install_app(self, project: Project, build: Build) -> tuple[BuildBundle, BuildBundle]:
        """Assemble the bundle locally and copy it to the device."""
        runnable_id = build.runnable.id
        user_facing_log("Installing", f"{runnable_id} to {self.id}", 0)

        log.debug("make_remote_app %s", runnable_id)
        build_bundle = make_remote_app(project, build)
        remote_bundle = self.to_remote_bundle(build_bundle)
        log.debug("Create remote dir: %s", remote_bundle.bundle_dir)

        try:
            _run([*self.ssh_command(), "mkdir", "-p", remote_bundle.bundle_dir], 2)
        except DinghyError as error:
            log.debug("Could not create remote dir: %s", error)

        log.info("Install %s to %s", runnable_id, self.id)
        self.sync(build_bundle.bundle_dir, remote_bundle.bundle_dir)
        self.sync(build_bundle.lib_dir, remote_bundle.lib_dir)
        return build_bundle, remote_bundle

    def remote_command(
        self, remote_bundle: BuildBundle, args: Sequence[str], envs: Sequence[str]
    ) -> str:
        """Build the shell command that runs the installed bundle on the device."""
        variables = self.conf.remote_shell_vars
        escaped = [_shell_escape(shell_expand(arg, variables)) for arg in args]
        return (
            f"cd '{path_to_str(remote_bundle.bundle_dir)}' ; "
            f"RUST_BACKTRACE=1 {' '.join(envs)} DINGHY=1 "
            f'LD_LIBRARY_PATH="{path_to_str(remote_bundle.lib_dir)}:$LD_LIBRARY_PATH" '
            f"{path_to_str(remote_bundle.bundle_exe)} {' '.join(escaped)}"
        )

    def clean_app(self, build_bundle: BuildBundle) -> None:
        command = [*self.ssh_command(), f"rm -rf {path_to_str(build_bundle.bundle_exe)}"]
        if _run(command, 1) != 0:
            raise DinghyError("test fail.")

    def run_app(
        self,
        project: Project,
        build: Build,
        args: Sequence[str],
        envs: Sequence[str],
    ) -> BuildBundle:
        runnable_id = build.runnable.id
        log.info("Install %s", runnable_id)
        build_bundle, remote_bundle = self.install_app(project, build)
        log.debug("Installed %s", runnable_id)

        command = self.remote_command(remote_bundle, args, envs)
        log.debug("Ssh command: %s", command)
        log.info("Run %s on %s", runnable_id, self.id)
        if get_current_verbosity() < 1:
            user_facing_log("Running", f"{runnable_id} on {self.id}", 0)

        if _run([*self.ssh_command(), command], 1) != 0:
            raise DinghyError("Failed")
        return build_bundle

    def is_compatible_with_regular_platform(self, platform: Platform) -> bool:
        return self.conf.platform is not None and self.conf.platform == platform.id

    def is_compatible_with_host_platform(self, platform: Platform) -> bool:
        return self.conf.platform is None or self.conf.platform == platform.id


@dataclass
class SshDeviceManager(PlatformManager):
    """Provides the ssh devices declared in the configuration."""

    conf: Configuration

    def devices(self) -> list[Device]:
        return [
            SshDevice(id=device_id, conf=dataclasses.replace(device_conf))
            for device_id, device_conf in self.conf.ssh_devices.items()
        ]

    def platforms(self) -> list[Platform]:
        return []