"""Options that configure how the global logger is built."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Callable

ENCODINGS = ("json", "console", "yyjson")
ROTATIONS = ("hour", "date")


def _program_name() -> str:
    return os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "python"


@dataclass
class LogConfig:
    """Settings for building a logger.

    ``target`` is ``stdout`` or ``asyncfile``; the ``log_file_*`` settings
    only matter for ``asyncfile``.
    """

    process_name: str = field(default_factory=_program_name)
    with_pid: bool = True
    encoding: str = "json"
    target: str = "stdout"
    log_file_name: str = field(default_factory=_program_name)
    log_file_path: str = "../log"
    log_file_rotate: str = ""
    host_name: str = ""


LogOption = Callable[[LogConfig], None]


def default_config() -> LogConfig:
    """Return a fresh configuration holding the defaults."""
    return LogConfig()


def set_target(name: str) -> LogOption:
    """Choose the output: ``stdout`` or ``asyncfile``."""

    def apply(config: LogConfig) -> None:
        config.target = name

    return apply


def log_file_name(name: str) -> LogOption:
    """Set the log file's base name; ``.log`` is appended to it."""

    def apply(config: LogConfig) -> None:
        config.log_file_name = name

    return apply


def log_file_path(path: str) -> LogOption:
    """Set the directory the log file is written to."""

    def apply(config: LogConfig) -> None:
        config.log_file_path = path

    return apply


def log_file_rotate(rotate: str) -> LogOption:
    """Split the log file by ``hour`` or ``date``; other values are ignored."""

    def apply(config: LogConfig) -> None:
        if rotate in ROTATIONS:
            config.log_file_rotate = rotate

    return apply


def set_encode(enc: str) -> LogOption:
    """Choose the encoding: ``yyjson``, ``json`` or ``console``; anything else means ``json``."""

    def apply(config: LogConfig) -> None:
        config.encoding = enc if enc in ENCODINGS else "json"

    return apply


def with_pid(yes: bool) -> LogOption:
    """Choose whether entries carry the process id."""

    def apply(config: LogConfig) -> None:
        config.with_pid = yes

    return apply


def process_name(pname: str) -> LogOption:
    """Set the process name written with each entry."""

    def apply(config: LogConfig) -> None:
        config.process_name = pname

    return apply


def host_name(hostname: str) -> LogOption:
    """Set a host name to write with each entry; empty means none."""

    def apply(config: LogConfig) -> None:
        config.host_name = hostname

    return apply