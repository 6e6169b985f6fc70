"""Levels, cores that write encoded entries, and the logger that drives them."""

from __future__ import annotations

import dataclasses
import json
import os
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, TextIO, Union

from .asynclog import NO_FLAG, LogFile, LogRotate, new_log_file
from .config import LogConfig
from .encoder import (
    Caller,
    EncoderConfig,
    Entry,
    Field,
    JSONEncoder,
    Level,
    YYEncoder,
    datetime_time_encoder,
    set_process_name,
)


class PanicError(RuntimeError):
    """Raised after a panic-level entry has been written."""


_LEVEL_NAMES = {str(level): level for level in Level}
_LEVEL_NAMES[""] = Level.INFO


class AtomicLevel:
    """A minimum level that can be changed while loggers use it."""

    def __init__(self, level: Level = Level.INFO):
        self._level = Level(level)

    @property
    def level(self) -> Level:
        return self._level

    def enabled(self, level: Level) -> bool:
        """Whether entries at level pass this threshold."""
        return level >= self._level

    def set(self, text: str) -> None:
        """Change the threshold to the level named by text."""
        try:
            self._level = _LEVEL_NAMES[text.lower()]
        except KeyError:
            raise ValueError(f"unrecognized level: {text!r}") from None


def _append_name(name: str, enc: YYEncoder) -> None:
    enc.append_string(name)


class ConsoleEncoder(JSONEncoder):
    """Tab-separated encoder: header values as text, fields as one JSON object."""

    def clone(self) -> "ConsoleEncoder":
        """Return an independent copy holding the same context fields."""
        return super().clone()

    def _element(self, encode, value) -> str:
        scratch = JSONEncoder(self.config)
        encode(value, scratch)
        text = scratch.getvalue()
        return json.loads(text) if text.startswith('"') else text

    def encode_entry(self, entry: Entry, fields=()) -> str:
        """Encode an entry as one tab-separated line."""
        cfg = self.config
        elements = []
        if cfg.time_key and cfg.encode_time is not None:
            elements.append(self._element(cfg.encode_time, entry.time))
        if cfg.level_key and cfg.encode_level is not None:
            elements.append(self._element(cfg.encode_level, entry.level))
        if entry.logger_name and cfg.name_key:
            elements.append(self._element(cfg.encode_name or _append_name, entry.logger_name))
        if entry.caller.defined and cfg.caller_key and cfg.encode_caller is not None:
            elements.append(self._element(cfg.encode_caller, entry.caller))
        if cfg.message_key:
            elements.append(entry.message)
        line = "\t".join(elements)

        context = self.clone()
        for item in fields:
            item.add_to(context)
        context._close_open_namespaces()
        body = context.getvalue()
        if body:
            line = f"{line}\t{{{body}}}" if line else f"{{{body}}}"
        if entry.stack and cfg.stacktrace_key:
            line += "\n" + entry.stack
        return line + (cfg.line_ending or "\n")


def _with_fields(core, fields: Iterable[Field]):
    encoder = core.encoder.clone()
    for item in fields:
        item.add_to(encoder)
    return dataclasses.replace(core, encoder=encoder)


@dataclass
class StreamCore:
    """Writes encoded entries to a text stream; None means the current stdout."""

    level: AtomicLevel
    encoder: YYEncoder
    stream: Optional[TextIO] = None

    def _out(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stdout

    def with_fields(self, fields) -> "StreamCore":
        """Return a core whose entries also carry fields."""
        return _with_fields(self, fields)

    def write(self, entry: Entry, fields=()) -> None:
        """Encode and write one entry; entries above error level are flushed at once."""
        self._out().write(self.encoder.encode_entry(entry, fields))
        if entry.level > Level.ERROR:
            self.sync()

    def sync(self) -> None:
        self._out().flush()


@dataclass
class FileCore:
    """Writes encoded entries to an asynchronously flushed log file."""

    level: AtomicLevel
    encoder: YYEncoder
    logfile: LogFile

    def with_fields(self, fields) -> "FileCore":
        """Return a core whose entries also carry fields."""
        return _with_fields(self, fields)

    def write(self, entry: Entry, fields=()) -> None:
        """Encode one entry and queue it on the log file."""
        self.logfile.write(self.encoder.encode_entry(entry, fields))

    def sync(self) -> None:
        """Write queued entries out to the file."""
        self.logfile.flush()


def _check_fields(fields) -> tuple:
    for item in fields:
        if not isinstance(item, Field):
            raise TypeError(f"expected a Field, got {type(item).__name__}")
    return tuple(fields)


def _caller_of(frame) -> Caller:
    if frame is None:
        return Caller()
    filename = frame.f_code.co_filename
    module = os.path.splitext(os.path.basename(filename))[0]
    return Caller(
        defined=True,
        file=filename,
        line=frame.f_lineno,
        function=f"{module}.{frame.f_code.co_name}" if module else frame.f_code.co_name,
    )


@dataclass(frozen=True)
class ZLogger:
    """Structured logger writing through a core.

    Panic-level entries raise PanicError and fatal ones SystemExit(1),
    after being written and whatever the core's level.
    """

    core: Union[StreamCore, FileCore]
    add_caller: bool = True
    caller_skip: int = 0
    stack_level: Optional[Level] = None

    def with_fields(self, *args) -> "ZLogger":
        """Return a logger whose entries also carry the given fields."""
        return dataclasses.replace(self, core=self.core.with_fields(_check_fields(args)))

    def with_caller_skip(self, skip: int) -> "ZLogger":
        """Return a logger that reports a caller skip frames further out."""
        return dataclasses.replace(self, caller_skip=self.caller_skip + skip)

    def log(self, level: Level, msg: str, *args) -> None:
        self._emit(Level(level), msg, args)

    def debug(self, msg: str, *args) -> None:
        self._emit(Level.DEBUG, msg, args)

    def info(self, msg: str, *args) -> None:
        self._emit(Level.INFO, msg, args)

    def warn(self, msg: str, *args) -> None:
        self._emit(Level.WARN, msg, args)

    def error(self, msg: str, *args) -> None:
        self._emit(Level.ERROR, msg, args)

    def dpanic(self, msg: str, *args) -> None:
        self._emit(Level.DPANIC, msg, args)

    def panic(self, msg: str, *args) -> None:
        self._emit(Level.PANIC, msg, args)

    def fatal(self, msg: str, *args) -> None:
        self._emit(Level.FATAL, msg, args)

    def sync(self) -> None:
        self.core.sync()

    def _emit(self, level: Level, msg: str, fields) -> None:
        fields = _check_fields(fields)
        if self.core.level.enabled(level):
            try:
                # 0: _emit, 1: the public method, 2: its caller
                frame = sys._getframe(2 + self.caller_skip)
            except ValueError:
                frame = None
            stack = ""
            if frame is not None and self.stack_level is not None and level >= self.stack_level:
                stack = "".join(traceback.format_stack(frame))
            entry = Entry(
                level=level,
                message=msg,
                caller=_caller_of(frame) if self.add_caller else Caller(),
                stack=stack,
            )
            try:
                self.core.write(entry, fields)
            except (OSError, TypeError, ValueError) as exc:
                print(f"{datetime.now()} write error: {exc}", file=sys.stderr)
        if level == Level.PANIC:
            raise PanicError(msg)
        if level == Level.FATAL:
            raise SystemExit(1)


def _encoder_config() -> EncoderConfig:
    cfg = EncoderConfig.production()
    cfg.time_key = "timestamp"
    cfg.encode_time = datetime_time_encoder
    return cfg


_STREAM_ENCODERS = {"json": JSONEncoder, "console": ConsoleEncoder, "yyjson": YYEncoder}


def _build_stream_logger(config: LogConfig) -> tuple[AtomicLevel, ZLogger]:
    encoder_type = _STREAM_ENCODERS.get(config.encoding)
    if encoder_type is None:
        raise ValueError(f"no encoder registered for name {config.encoding!r}")
    level = AtomicLevel(Level.INFO)
    core = StreamCore(level, encoder_type(_encoder_config()))
    return level, ZLogger(core)


def _build_file_logger(config: LogConfig) -> tuple[AtomicLevel, ZLogger]:
    filename = config.log_file_name + ".log"
    if config.log_file_path:
        os.makedirs(config.log_file_path, exist_ok=True)
        filename = os.path.join(config.log_file_path, filename)
        with open(filename, "a", encoding="utf-8"):
            pass

    logfile = new_log_file(filename)
    if config.log_file_rotate == "date":
        logfile.rotate = LogRotate.DATE
    elif config.log_file_rotate == "hour":
        logfile.rotate = LogRotate.HOUR
    logfile.flags = NO_FLAG
    logfile.newline = ""

    if config.encoding == "console":
        encoder = ConsoleEncoder(_encoder_config())
    elif config.encoding == "yyjson":
        encoder = YYEncoder(_encoder_config())
    else:
        encoder = JSONEncoder(_encoder_config())
    level = AtomicLevel(Level.INFO)
    core = FileCore(level, encoder, logfile)
    return level, ZLogger(core, stack_level=Level.DPANIC)


def build_logger(config: LogConfig) -> tuple[AtomicLevel, ZLogger]:
    """Build a logger from config; return its adjustable level and the logger."""
    if config.target == "asyncfile":
        level, logger = _build_file_logger(config)
    else:
        level, logger = _build_stream_logger(config)

    context = []
    if config.encoding != "yyjson":
        if config.with_pid:
            context.append(Field("pid", os.getpid()))
        if config.process_name:
            context.append(Field("procname", config.process_name))
    elif config.process_name:
        set_process_name(config.process_name)
    if config.host_name:
        context.append(Field("hostname", config.host_name))
    if context:
        logger = logger.with_fields(*context)
    return level, logger