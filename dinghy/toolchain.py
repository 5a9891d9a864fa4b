"""Cross-compilation toolchain description and wrapper scripts."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dinghy.core import SetupArgs

_ON_WINDOWS = os.name == "nt"
GLOB_ARGS = "%*" if _ON_WINDOWS else '"$@"'


@dataclass
class ToolchainConfig:
    """Where a toolchain's executables live and how they are named."""

    bin_dir: Path
    root: Path
    rustc_triple: str
    sysroot: Path | None
    cc: str
    cxx: str
    binutils_prefix: str
    cc_prefix: str

    def __post_init__(self) -> None:
        self.bin_dir = Path(self.bin_dir)
        self.root = Path(self.root)
        if self.sysroot is not None:
            self.sysroot = Path(self.sysroot)

    def cc_executable(self, name_without_triple: str) -> str:
        """Return the path of a compiler tool, such as ``gcc``."""
        return str(self.bin_dir / f"{self.cc_prefix}-{name_without_triple}")

    def binutils_executable(self, name_without_triple: str) -> str:
        """Return the path of a binutils tool, such as ``ar`` or ``strip``."""
        return str(self.bin_dir / f"{self.binutils_prefix}-{name_without_triple}")

    def naked_executable(self, name: str) -> str:
        """Return the path of a tool carrying no prefix."""
        return str(self.bin_dir / name)

    def generate_linker_command(self, setup_args: SetupArgs) -> str:
        """Build the linker command line for this toolchain."""
        command = self.cc_executable(self.cc) + " "
        if setup_args.verbosity > 0:
            command += "-Wl,--verbose -v"
        if self.sysroot is not None:
            command += f" --sysroot {self.sysroot}"
        command += "".join(f" -l{overlay}" for overlay in setup_args.forced_overlays)
        return command


def create_shim(
    root: str | os.PathLike,
    rustc_triple: str,
    shim_id: str,
    name: str,
    shell: str,
) -> Path:
    """Write an executable wrapper script under ``root/target/<triple>/<id>``."""
    shim_dir = Path(root) / "target" / rustc_triple / shim_id
    shim_dir.mkdir(parents=True, exist_ok=True)
    shim = shim_dir / name
    if _ON_WINDOWS:
        shim = shim.with_suffix(".bat")

    header = "" if _ON_WINDOWS else "#!/bin/sh\n"
    with open(shim, "w", encoding="utf-8", newline="\n") as handle:
        handle.write(f"{header}{shell}\n\n")
    if not _ON_WINDOWS:
        os.chmod(shim, 0o777)
    return shim