import pytest

from dinghy import config
from dinghy.utils import DinghyError


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_test_data_from_str():
    td = config.TestDataConfiguration.from_value("tests/my_test_data")
    assert td.source == "tests/my_test_data"
    assert td.copy_git_ignored is False
    assert td.target is None


def test_test_data_from_table():
    td = config.TestDataConfiguration.from_value(
        {"source": "tests/data", "copy_git_ignored": True, "target": "out"}
    )
    assert (td.source, td.copy_git_ignored, td.target) == ("tests/data", True, "out")


def test_test_data_table_requires_copy_git_ignored():
    with pytest.raises(DinghyError, match="copy_git_ignored"):
        config.TestDataConfiguration.from_value({"source": "tests/data"})


def test_test_data_rejects_other_types():
    with pytest.raises(DinghyError):
        config.TestDataConfiguration.from_value(42)


def test_platform_env_items():
    pf = config.PlatformConfiguration.from_dict(
        {"rustc_triple": "aarch64-unknown-linux-gnu", "env": {"A": "1", "B": "2"}}
    )
    assert sorted(pf.env_items()) == [("A", "1"), ("B", "2")]
    assert config.PlatformConfiguration().env_items() == []


def test_platform_overlays_parsed():
    pf = config.PlatformConfiguration.from_dict(
        {"overlays": {"ssl": {"path": "/opt/ssl"}}}
    )
    assert pf.overlays["ssl"].path == "/opt/ssl"
    assert pf.overlays["ssl"].scope is None


def test_overlay_requires_path():
    with pytest.raises(DinghyError, match="path"):
        config.OverlayConfiguration.from_dict({"scope": "app"})


def test_ssh_device_defaults_and_validation():
    dev = config.SshDeviceConfiguration.from_dict(
        {"hostname": "127.0.0.1", "username": "user"}
    )
    assert dev.remote_shell_vars == {}
    assert dev.port is None
    with pytest.raises(DinghyError):
        config.SshDeviceConfiguration.from_dict(
            {"hostname": "127.0.0.1", "username": "user", "port": 70000}
        )
    with pytest.raises(DinghyError, match="username"):
        config.SshDeviceConfiguration.from_dict({"hostname": "127.0.0.1"})


def test_script_device_from_dict():
    dev = config.ScriptDeviceConfiguration.from_dict({"path": "/bin/run", "platform": "pi"})
    assert (dev.path, dev.platform) == ("/bin/run", "pi")


def test_merge_reads_everything(tmp_path):
    file = write(
        tmp_path / "dinghy.toml",
        """
skip_source_copy = true

[platforms.pi]
rustc_triple = "armv7-unknown-linux-gnueabihf"
toolchain = "/opt/pi"

[ssh_devices.board]
hostname = "10.0.0.2"
username = "user"
port = 2222

[script_devices.sim]
path = "/bin/sim"

[test_data]
dinghy_source = "../.."
detailed = { source = "data", copy_git_ignored = true, target = "dest" }
""",
    )
    conf = config.Configuration()
    conf.merge(file)

    assert conf.skip_source_copy is True
    assert conf.platforms["pi"].toolchain == "/opt/pi"
    assert conf.ssh_devices["board"].port == 2222
    assert conf.script_devices["sim"].path == "/bin/sim"
    by_id = {td.id: td for td in conf.test_data}
    assert by_id["dinghy_source"].target == by_id["dinghy_source"].source == "../.."
    assert by_id["dinghy_source"].base == file
    assert by_id["detailed"].target == "dest"
    assert by_id["detailed"].copy_git_ignored is True


def test_merge_later_file_overrides(tmp_path):
    first = write(tmp_path / "a.toml", '[platforms.pi]\ntoolchain = "one"\n')
    second = write(
        tmp_path / "b.toml",
        '[platforms.pi]\ntoolchain = "two"\n[platforms.alpha]\ntoolchain = "x"\n',
    )
    conf = config.Configuration()
    conf.merge(first)
    conf.merge(second)
    assert conf.platforms["pi"].toolchain == "two"
    assert list(conf.platforms) == sorted(conf.platforms)


def test_merge_keeps_skip_source_copy_when_absent(tmp_path):
    conf = config.Configuration()
    conf.merge(write(tmp_path / "a.toml", "skip_source_copy = true\n"))
    conf.merge(write(tmp_path / "b.toml", "[platforms]\n"))
    assert conf.skip_source_copy is True


def test_read_config_file_rejects_bad_toml(tmp_path):
    with pytest.raises(DinghyError):
        config.read_config_file(write(tmp_path / "bad.toml", "platforms = [[["))


def test_read_config_file_rejects_wrong_types(tmp_path):
    with pytest.raises(DinghyError):
        config.read_config_file(write(tmp_path / "bad.toml", 'skip_source_copy = "yes"\n'))


def test_dinghy_config_walks_up_and_parents_win(tmp_path):
    project = tmp_path / "ws" / "app"
    project.mkdir(parents=True)
    write(project / "dinghy.toml", '[platforms.pi]\ntoolchain = "child"\n')
    write(tmp_path / "ws" / ".dinghy" / "dinghy.toml", '[platforms.pi]\ntoolchain = "parent"\n[test_data]\nroot = "data"\n')
    home = tmp_path / "home"
    write(home / ".dinghy.toml", '[script_devices.sim]\npath = "/bin/sim"\n')

    conf = config.dinghy_config(project, home)

    assert conf.platforms["pi"].toolchain == "parent"
    assert [td.id for td in conf.test_data] == ["root"]
    assert conf.script_devices["sim"].path == "/bin/sim"


def test_dinghy_config_home_not_loaded_twice(tmp_path):
    home = tmp_path / "home"
    project = home / "proj"
    project.mkdir(parents=True)
    write(home / ".dinghy.toml", '[test_data]\nonce = "data"\n')

    conf = config.dinghy_config(project, home)

    assert [td.id for td in conf.test_data] == ["once"]