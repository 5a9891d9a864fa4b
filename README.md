# dinghy

`dinghy` is a library that takes test executables built for another platform
and runs them where they can execute: on machines reached over SSH, through a
runner script of your own, or on the host itself.

Python 3.11 or later is required; the only dependency is `termcolor`.

## Installation

```
pip install .
```

## Configuration

`dinghy.config.dinghy_config(directory, home=None)` looks for
`dinghy.toml`, `.dinghy.toml`, `.dinghy/dinghy.toml` and `.dinghy/.dinghy.toml`
in `directory` and each of its parents, then `.dinghy.toml` at the root, then
the same four names in the home directory when `directory` is not inside it.
Every file found is merged, in that order, into one `Configuration` with
`Configuration.merge`; later files override earlier entries with the same
name. Malformed files or fields of the wrong type raise
`dinghy.utils.DinghyError`.

```toml
skip_source_copy = false

[platforms.arm]
rustc_triple = "armv7-unknown-linux-gnueabihf"
toolchain = "/opt/toolchains/arm"

[platforms.arm.env]
MY_FLAG = "1"

[ssh_devices.board]
hostname = "192.0.2.10"
username = "user"
port = 2222
platform = "arm"
path = "/data/local"
remote_shell_vars = { HOME = "/home/user" }

[script_devices.emulator]
path = "/usr/local/bin/run-in-emulator"
platform = "arm"

[test_data]
fixtures = "tests/fixtures"
large = { source = "data/large", copy_git_ignored = true }
```

A test data entry is either a path, or a table with `source`,
`copy_git_ignored` (required in the table form) and an optional `target`.
Paths are relative to the directory of the file that declares them.

## Discovering devices and platforms

```python
from pathlib import Path

from dinghy.config import dinghy_config
from dinghy.dinghy import Dinghy

conf = dinghy_config(Path.cwd())
dinghy = Dinghy.probe(conf)

host = dinghy.host_platform()          # always the first platform
for platform in dinghy.platforms():
    print(platform)
for device in dinghy.devices():
    print(device)

arm = dinghy.platform_by_name("arm")   # None when absent
```

`Dinghy.probe` collects, in order:

- the host platform from `dinghy.platforms.HostManager` (configured by a
  `[platforms.host]` entry, if any);
- script devices (`dinghy.script.ScriptDeviceManager`) and SSH devices
  (`dinghy.ssh.SshDeviceManager`) from the configuration;
- devices and platforms from plugins (`dinghy.plugin.PluginManager`);
- one `RegularPlatform` for every other configured platform. A platform
  without `rustc_triple` is an error; without `toolchain` it defaults to
  `~/.dinghy/toolchain/<name>`.

### Plugins

Every executable on `PATH` whose name starts with `cargo-dinghy-` is a plugin
(`dinghy.plugin.auto_detect_plugins`). It is run with `devices`, and must
print TOML with optional `ssh_devices` and `script_devices` tables, and with
`platforms`, printing TOML that maps platform names to platform settings
(each needing `rustc_triple` and `toolchain`). A plugin that fails or prints
invalid output is skipped. Platforms already configured, or already given by
an earlier plugin, are ignored, as are devices whose name is already a
configured script device.

## Platforms and toolchains

`dinghy.platforms.RegularPlatform.create(configuration, platform_id,
rustc_triple, toolchain_path)` finds the first `bin/*-gcc` (or `*-gcc.exe`)
in the toolchain to learn the tool prefix, and a `sysroot` directory directly
in the toolchain or one level below (`find_sysroot`). When the configuration
sets `deb_multiarch`, the tools are taken from `/usr/bin` with that prefix and
the sysroot is `/`.

`dinghy.toolchain.ToolchainConfig` gives the paths of the toolchain's tools
(`cc_executable`, `binutils_executable`, `naked_executable`) and builds the
linker command line (`generate_linker_command`). `create_shim` writes an
executable wrapper script under `<root>/target/<triple>/<id>/`.

`Platform.strip(build)` strips a copy of the executable (`<exe>-stripped`)
with the toolchain's `strip` (or the host's `strip`) and points the build at
it.

## Bundles and devices

`dinghy.core` holds the shared types: `SetupArgs`, `Runnable`, `Build`,
`BuildBundle`, and the abstract `Device`, `Platform` and `PlatformManager`.

`dinghy.device.make_remote_app(project, build)` assembles
`<target_path>/dinghy/<package_name>/` with the executable (as
`_dinghy_<id>`), the files named in the run arguments, the project sources
(without `target/`, hidden files, and entries matched by `.dinghyignore`,
`.ignore` or `.gitignore` files) and the test data, plus an `overlay/`
directory holding the dynamic libraries that are not sysroot libraries.
`dinghy.project.Project` ties a `Configuration` to a `Metadata`
(workspace root and target directory).

- `dinghy.ssh.SshDevice.run_app` builds the bundle, copies it with `rsync`
  (first copying an ad-hoc rsync binary with `scp` when
  `install_adhoc_rsync_local_path` is set), then runs it with `ssh` under
  `<path or /tmp>/dinghy`. Arguments are expanded from `remote_shell_vars`
  (`shell_expand`) and shell-quoted. A non-zero exit raises `DinghyError`.
- `dinghy.script.ScriptDevice.run_app` runs the configured script with the
  executable and arguments, in the source directory, with `DINGHY_DEVICE`,
  `DINGHY_TEST_DATA`, `DINGHY_TEST_DATA_PATH`, `DINGHY_PLATFORM` (when set)
  and the given `NAME=value` variables in its environment.

`dinghy.utils.set_current_verbosity` controls which `Running` / `Installing`
messages are printed on stderr.

## Test data from inside a test

```python
from dinghy.testdata import test_file_path, test_project_path, try_test_file_path

fixtures = test_file_path("fixtures")   # raises DinghyError when unknown
maybe = try_test_file_path("large")     # None when unknown
sources = test_project_path()
```

When the `DINGHY` environment variable is set, test data is looked up in
`test_data/` next to the executable. Otherwise it is read from the
`test_data.cfg` index that `Project.link_test_data` writes.

## What it does not do

- There is no command-line program; `dinghy` is used as a library.
- It does not set up a build environment: no compiler, linker, pkg-config or
  runner environment variables are exported, and platform overlays are parsed
  from the configuration but not applied.
- Only the host, SSH devices, script devices and plugin-provided ones are
  supported; there are no Android or Apple device managers.
- Debugging an application on a device is not supported.

## Running the tests

```
pip install .[test]
pytest
```