"""Devices driven by a user-provided runner script."""

from __future__ import annotations

import dataclasses
import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from dinghy.config import Configuration, ScriptDeviceConfiguration
from dinghy.core import Build, BuildBundle, Device, Platform, PlatformManager
from dinghy.project import Project
from dinghy.utils import DinghyError, log_invocation

log = logging.getLogger(__name__)


def _parse_env_specs(envs: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for spec in envs:
        parts = spec.split("=")
        if len(parts) < 2:
            raise DinghyError(f"Wrong env spec {spec!r}")
        parsed[parts[0]] = parts[1]
    return parsed


@dataclass
class ScriptDevice(Device):
    """A device whose applications are run by an external script."""

    id: str
    conf: ScriptDeviceConfiguration

    def __str__(self) -> str:
        return self.id

    def command(self, build: Build) -> tuple[list[str], dict[str, str]]:
        """Return the script invocation and the environment variables it receives."""
        try:
            os.stat(self.conf.path)
        except OSError as error:
            raise DinghyError(f"Can not read {self.conf.path!r} for {self.id}.") from error
        env = {"DINGHY_TEST_DATA": self.id, "DINGHY_DEVICE": self.id}
        if self.conf.platform is not None:
            env["DINGHY_PLATFORM"] = self.conf.platform
        return [self.conf.path], env

    def clean_app(self, build_bundle: BuildBundle) -> None:
        """Nothing is installed, so there is nothing to clean."""

    def run_app(
        self,
        project: Project,
        build: Build,
        args: Sequence[str],
        envs: Sequence[str],
    ) -> BuildBundle:
        """Run the build's executable through the script, in the sources directory."""
        runnable = build.runnable
        root_dir = Path(build.target_path) / "dinghy"
        bundle_path = Path(runnable.source)

        log.debug("About to start runner script...")
        test_data_path = project.link_test_data(runnable)

        argv, extra_env = self.command(build)
        argv = [*argv, os.fspath(runnable.exe), *args]
        extra_env["DINGHY_TEST_DATA_PATH"] = os.fspath(test_data_path)
        extra_env.update(_parse_env_specs(envs))

        log_invocation(argv, 1, extra_env)
        try:
            result = subprocess.run(
                argv,
                cwd=bundle_path,
                env={**os.environ, **extra_env},
                check=False,
            )
        except OSError as error:
            raise DinghyError(f"Could not run {self.conf.path}") from error
        if result.returncode != 0:
            raise DinghyError("Test failed")

        return BuildBundle(
            id=runnable.id,
            bundle_dir=bundle_path,
            bundle_exe=Path(runnable.exe),
            lib_dir=Path(build.target_path),
            root_dir=root_dir,
            app_id=None,
        )

    def is_compatible_with_regular_platform(self, platform: Platform) -> bool:
        return self.conf.platform is not None and self.conf.platform == platform.id


@dataclass
class ScriptDeviceManager(PlatformManager):
    """Provides the script devices declared in the configuration."""

    conf: Configuration

    def devices(self) -> list[Device]:
        return [
            ScriptDevice(id=device_id, conf=dataclasses.replace(device_conf))
            for device_id, device_conf in self.conf.script_devices.items()
        ]

    def platforms(self) -> list[Platform]:
        return []