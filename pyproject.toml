[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dinghy"
version = "0.1.0"
description = "Bundle test executables and run them on ssh devices, runner scripts and cross-compilation platforms"
requires-python = ">=3.11"
dependencies = [
    "termcolor",
]
keywords = ["cross-compilation", "testing", "devices", "ssh", "toolchain", "rsync"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["dinghy"]

[tool.pytest.ini_options]
addopts = "-ra"
