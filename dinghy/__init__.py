"""Bundle test executables and run them on ssh devices, runner scripts and the host."""

__version__ = "0.1.0"