import io
import json
import sys
from pathlib import Path

import pytest

from dinghy.config import Configuration, PlatformConfiguration, SshDeviceConfiguration
from dinghy.core import Build, BuildBundle, Runnable, SetupArgs
from dinghy.platforms import HostPlatform, RegularPlatform
from dinghy.project import Metadata, Project
from dinghy.ssh import SshDevice, SshDeviceManager, shell_expand
from dinghy.utils import DinghyError

HOST = "device.example.com"


def _device(**kwargs) -> SshDevice:
    return SshDevice(
        id="board", conf=SshDeviceConfiguration(hostname=HOST, username="dev", **kwargs)
    )


def _fake_tool(bin_dir: Path, name: str, record: Path, exit_code: int = 0) -> None:
    bin_dir.mkdir(parents=True, exist_ok=True)
    tool = bin_dir / name
    tool.write_text(
        f"#!{sys.executable}\n"
        "import json, sys\n"
        f"with open({str(record)!r}, 'a') as handle:\n"
        "    handle.write(json.dumps(sys.argv) + '\\n')\n"
        f"sys.exit({exit_code})\n"
    )
    tool.chmod(0o755)


def _calls(record: Path) -> list[list[str]]:
    return [json.loads(line) for line in record.read_text().splitlines()]


def _with_path(monkeypatch, bin_dir: Path) -> None:
    monkeypatch.setenv("PATH", f"{bin_dir}:{'/usr/bin:/bin'}")


def test_shell_expand_variables():
    variables = {"HOME": "/home/dev", "FOO": "foo"}
    assert shell_expand("$HOME/data", variables) == "/home/dev/data"
    assert shell_expand("${FOO}bar", variables) == "foobar"
    assert shell_expand("~/data", variables) == "/home/dev/data"
    assert shell_expand("~", variables) == "/home/dev"


def test_shell_expand_leaves_unknown_untouched():
    assert shell_expand("$NOPE/x", {}) == "$NOPE/x"
    assert shell_expand("~/x", {}) == "~/x"
    assert shell_expand("a~b", {"HOME": "/h"}) == "a~b"


def test_ssh_command_with_port(monkeypatch):
    monkeypatch.setattr(sys, "stdout", io.StringIO())
    assert _device(port=2222).ssh_command() == ["ssh", "-p", "2222", f"dev@{HOST}"]
    assert _device().ssh_command() == ["ssh", f"dev@{HOST}"]


def test_sync_rsync_default():
    assert _device().sync_rsync() == "/usr/bin/rsync"


def test_to_remote_bundle_uses_tmp_by_default():
    bundle = BuildBundle(
        id="app",
        bundle_dir=Path("/build/dinghy/pkg"),
        bundle_exe=Path("/build/dinghy/pkg/_dinghy_app"),
        lib_dir=Path("/build/dinghy/overlay"),
        root_dir=Path("/build/dinghy"),
    )
    remote = _device().to_remote_bundle(bundle)
    assert remote.root_dir == Path("/tmp/dinghy")
    assert remote.bundle_dir == Path("/tmp/dinghy/pkg")
    assert remote.bundle_exe == Path("/tmp/dinghy/pkg/_dinghy_app")
    assert remote.lib_dir == Path("/tmp/dinghy/overlay")

    custom = _device(path="/data").to_remote_bundle(bundle)
    assert custom.bundle_dir == Path("/data/dinghy/pkg")


def test_remote_command_format():
    remote = BuildBundle(
        id="app",
        bundle_dir=Path("/tmp/dinghy/pkg"),
        bundle_exe=Path("/tmp/dinghy/pkg/_dinghy_app"),
        lib_dir=Path("/tmp/dinghy/overlay"),
        root_dir=Path("/tmp/dinghy"),
    )
    device = _device(remote_shell_vars={"HOME": "/home/dev"})
    command = device.remote_command(remote, ["$HOME/in", "it's"], ["A=1"])
    assert command == (
        "cd '/tmp/dinghy/pkg' ; RUST_BACKTRACE=1 A=1 DINGHY=1 "
        'LD_LIBRARY_PATH="/tmp/dinghy/overlay:$LD_LIBRARY_PATH" '
        "/tmp/dinghy/pkg/_dinghy_app /home/dev/in 'it'\\''s'"
    )


def test_repr_and_str():
    assert str(_device()) == f"board ({HOST})"
    assert repr(_device()) == (
        f'Ssh {{ "id": "board", "hostname": "{HOST}", "username": "dev", "port": "none" }}'
    )
    assert '"port": "22"' in repr(_device(port=22))


def test_compatibility():
    host = HostPlatform()
    regular = RegularPlatform.create(
        PlatformConfiguration(deb_multiarch="aarch64-linux-gnu"),
        "arm",
        "aarch64-unknown-linux-gnu",
        "/nonexistent",
    )
    assert host.is_compatible_with(_device()) is True
    assert host.is_compatible_with(_device(platform="host")) is True
    assert host.is_compatible_with(_device(platform="arm")) is False
    assert regular.is_compatible_with(_device(platform="arm")) is True
    assert regular.is_compatible_with(_device()) is False


def test_manager_lists_configured_devices():
    conf = Configuration(
        ssh_devices={
            "a": SshDeviceConfiguration(hostname=HOST, username="dev"),
            "b": SshDeviceConfiguration(hostname=HOST, username="dev", port=22),
        }
    )
    manager = SshDeviceManager(conf)
    devices = manager.devices()
    assert [device.id for device in devices] == ["a", "b"]
    assert devices[1].conf.port == 22
    assert manager.platforms() == []


def test_clean_app_runs_remote_rm(tmp_path, monkeypatch):
    record = tmp_path / "ssh.log"
    _fake_tool(tmp_path / "bin", "ssh", record)
    _with_path(monkeypatch, tmp_path / "bin")
    bundle = BuildBundle(bundle_exe=Path("/tmp/dinghy/pkg/_dinghy_app"))
    result = _device().clean_app(bundle)
    assert result is None
    calls = _calls(record)
    assert len(calls) == 1
    assert calls[0][-2:] == [f"dev@{HOST}", "rm -rf /tmp/dinghy/pkg/_dinghy_app"]


def test_clean_app_failure(tmp_path, monkeypatch):
    record = tmp_path / "ssh.log"
    _fake_tool(tmp_path / "bin", "ssh", record, exit_code=1)
    _with_path(monkeypatch, tmp_path / "bin")
    with pytest.raises(DinghyError, match="test fail"):
        _device().clean_app(BuildBundle(bundle_exe=Path("/x")))


def test_sync_failure(tmp_path, monkeypatch):
    record = tmp_path / "rsync.log"
    _fake_tool(tmp_path / "bin", "rsync", record, exit_code=3)
    _with_path(monkeypatch, tmp_path / "bin")
    with pytest.raises(DinghyError, match="Error syncing"):
        _device().sync(tmp_path, "/remote")
    call = _calls(record)[0]
    assert call[1:] == [
        "--rsync-path=/usr/bin/rsync",
        "-a",
        "-v",
        f"{tmp_path}/",
        f"dev@{HOST}:/remote/",
    ]


def test_run_app_installs_and_runs(tmp_path, monkeypatch):
    ssh_log = tmp_path / "ssh.log"
    rsync_log = tmp_path / "rsync.log"
    _fake_tool(tmp_path / "bin", "ssh", ssh_log)
    _fake_tool(tmp_path / "bin", "rsync", rsync_log)
    _with_path(monkeypatch, tmp_path / "bin")

    work = tmp_path / "work"
    exe = work / "target" / "debug" / "app"
    exe.parent.mkdir(parents=True)
    exe.write_text("binary")
    source = work / "src"
    source.mkdir()
    (source / "data.txt").write_text("data")
    build = Build(
        setup_args=SetupArgs(),
        runnable=Runnable(id="app-1", package_name="app", exe=exe, source=source),
        target_path=work / "target",
    )
    project = Project(
        conf=Configuration(),
        metadata=Metadata(workspace_root=work, target_directory=work / "target"),
    )
    device = _device(remote_shell_vars={"HOME": "/home/dev"})

    bundle = device.run_app(project, build, ["$HOME/data"], ["A=1"])

    assert bundle.bundle_dir == work / "target" / "dinghy" / "app"
    assert (bundle.bundle_dir / "data.txt").read_text() == "data"
    assert bundle.bundle_exe.read_text() == "binary"

    ssh_calls = _calls(ssh_log)
    assert ssh_calls[0][-3:] == ["mkdir", "-p", "/tmp/dinghy/app"]
    assert ssh_calls[-1][-1] == (
        "cd '/tmp/dinghy/app' ; RUST_BACKTRACE=1 A=1 DINGHY=1 "
        'LD_LIBRARY_PATH="/tmp/dinghy/overlay:$LD_LIBRARY_PATH" '
        "/tmp/dinghy/app/_dinghy_app-1 /home/dev/data"
    )

    rsync_calls = _calls(rsync_log)
    assert [call[-1] for call in rsync_calls] == [
        f"dev@{HOST}:/tmp/dinghy/app/",
        f"dev@{HOST}:/tmp/dinghy/overlay/",
    ]


def test_run_app_failure(tmp_path, monkeypatch):
    _fake_tool(tmp_path / "bin", "ssh", tmp_path / "ssh.log", exit_code=1)
    _fake_tool(tmp_path / "bin", "rsync", tmp_path / "rsync.log")
    _with_path(monkeypatch, tmp_path / "bin")

    exe = tmp_path / "target" / "debug" / "app"
    exe.parent.mkdir(parents=True)
    exe.write_text("binary")
    source = tmp_path / "src"
    source.mkdir()
    build = Build(
        setup_args=SetupArgs(),
        runnable=Runnable(id="app-1", package_name="app", exe=exe, source=source),
        target_path=tmp_path / "target",
    )
    project = Project(
        conf=Configuration(),
        metadata=Metadata(workspace_root=tmp_path, target_directory=tmp_path / "target"),
    )
    with pytest.raises(DinghyError, match="Failed"):
        _device().run_app(project, build, [], [])