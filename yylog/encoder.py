"""JSON log encoders, log entries and typed fields."""

from __future__ import annotations

import base64
import dataclasses
import json
import math
import os
import struct
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_process_name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "python"


class Level(IntEnum):
    """Severity of a log entry."""

    DEBUG = -1
    INFO = 0
    WARN = 1
    ERROR = 2
    DPANIC = 3
    PANIC = 4
    FATAL = 5

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Caller:
    """Source location that produced a log entry."""

    defined: bool = False
    file: str = ""
    line: int = 0
    function: str = ""

    def __str__(self) -> str:
        if not self.defined:
            return "undefined"
        return f"{self.file}:{self.line}"


def _now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class Entry:
    """A single log event, without its fields."""

    level: Level = Level.INFO
    time: datetime = field(default_factory=_now)
    logger_name: str = ""
    message: str = ""
    caller: Caller = field(default_factory=Caller)
    stack: str = ""


@dataclass(frozen=True)
class Field:
    """A key and a value to be attached to a log entry."""

    key: str
    value: Any

    def add_to(self, enc: "YYEncoder") -> None:
        """Add this field to an object encoder, picking the method by value type."""
        kind, value = _classify(self.value)
        if kind == "binary":
            enc.add_binary(self.key, value)
        else:
            getattr(enc, f"add_{kind}")(self.key, value)


class _Sequence:
    """Array marshaler over a plain Python sequence."""

    def __init__(self, items):
        self.items = items

    def marshal_log_array(self, enc: "YYEncoder") -> None:
        for item in self.items:
            _append_any(enc, item)


def _classify(value: Any) -> tuple[str, Any]:
    if isinstance(value, bool):
        return "bool", value
    if isinstance(value, int):
        return "int", value
    if isinstance(value, float):
        return "float", value
    if isinstance(value, complex):
        return "complex", value
    if isinstance(value, str):
        return "string", value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "binary", bytes(value)
    if isinstance(value, datetime):
        return "time", value
    if isinstance(value, timedelta):
        return "duration", value
    if isinstance(value, BaseException):
        return "string", str(value)
    if hasattr(value, "marshal_log_object"):
        return "object", value
    if hasattr(value, "marshal_log_array"):
        return "array", value
    if isinstance(value, (list, tuple)):
        return "array", _Sequence(value)
    return "reflected", value


def _append_any(enc: "YYEncoder", value: Any) -> None:
    kind, value = _classify(value)
    if kind == "binary":
        enc.append_string(base64.b64encode(value).decode("ascii"))
    else:
        getattr(enc, f"append_{kind}")(value)


# --- value helpers -------------------------------------------------------


def _to_float32(value: float) -> float:
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _shortest_float32(value: float) -> str:
    for digits in range(1, 10):
        text = f"{value:.{digits}g}"
        if _to_float32(float(text)) == value:
            return text
    return repr(value)


def _format_float(value: float, bits: int = 64) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = repr(value) if bits == 64 else _shortest_float32(value)
    return format(Decimal(text).normalize(), "f")


def _unix_micros(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - _EPOCH) // timedelta(microseconds=1)


def _duration_nanos(value) -> int:
    if isinstance(value, timedelta):
        return ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000
    return int(value)


def _marshaler(obj: Any, method: str) -> Callable:
    func = getattr(obj, method, None)
    if func is not None:
        return func
    if callable(obj):
        return obj
    raise TypeError(f"{type(obj).__name__} has no {method} method")


def _reflect_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _reflect(obj: Any) -> str:
    return json.dumps(
        obj,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=True,
        allow_nan=False,
        default=_reflect_default,
    )


# --- escaping ------------------------------------------------------------

_ESCAPES = {
    0x5C: "\\\\",
    0x22: '\\"',
    0x0A: "\\n",
    0x0D: "\\r",
    0x09: "\\t",
}


def _utf8_length(lead: int) -> int:
    if 0xC2 <= lead <= 0xDF:
        return 2
    if 0xE0 <= lead <= 0xEF:
        return 3
    if 0xF0 <= lead <= 0xF4:
        return 4
    return 0


def json_escape(data) -> str:
    """JSON-escape a str or bytes value; each invalid UTF-8 byte becomes \\ufffd."""
    raw = data.encode("utf-8", "surrogatepass") if isinstance(data, str) else bytes(data or b"")
    out: list[str] = []
    i, n = 0, len(raw)
    while i < n:
        b = raw[i]
        if b < 0x80:
            if b >= 0x20 and b not in (0x5C, 0x22):
                out.append(chr(b))
            elif b in _ESCAPES:
                out.append(_ESCAPES[b])
            else:
                out.append(f"\\u00{b:02x}")
            i += 1
            continue
        size = _utf8_length(b)
        char = None
        if size:
            try:
                char = raw[i : i + size].decode("utf-8")
            except UnicodeDecodeError:
                char = None
        if char is None:
            out.append("\\ufffd")
            i += 1
        else:
            out.append(char)
            i += size
    return "".join(out)


# --- primitive encoders --------------------------------------------------


def epoch_time_encoder(value: datetime, enc: "YYEncoder") -> None:
    """Encode a time as floating-point seconds since the Unix epoch."""
    enc.append_float(_unix_micros(value) / 1e6)


def datetime_time_encoder(value: datetime, enc: "YYEncoder") -> None:
    """Encode a time as 'YYYY-MM-DD HH:MM:SS'."""
    enc.append_string(value.strftime("%Y-%m-%d %H:%M:%S"))


def seconds_duration_encoder(value, enc: "YYEncoder") -> None:
    """Encode a duration (timedelta or nanoseconds) as floating-point seconds."""
    enc.append_float(_duration_nanos(value) / 1e9)


def lowercase_level_encoder(level: Level, enc: "YYEncoder") -> None:
    """Encode a level as its lower-case name."""
    enc.append_string(str(level))


def _short_path(path: str) -> str:
    parts = path.replace("\\", "/").rsplit("/", 2)
    return "/".join(parts[-2:]) if len(parts) >= 2 else path


def full_name_caller_encoder(caller: Caller, enc: "YYEncoder") -> None:
    """Encode a caller as 'dir/file:function:line'."""
    if not caller.defined:
        enc.append_string("undefined")
        return
    funcname = caller.function
    if "." in funcname:
        funcname = funcname[funcname.rindex(".") + 1 :]
    enc.append_string(f"{_short_path(caller.file)}:{funcname}:{caller.line}")


def _short_caller_encoder(caller: Caller, enc: "YYEncoder") -> None:
    if not caller.defined:
        enc.append_string("undefined")
        return
    enc.append_string(f"{_short_path(caller.file)}:{caller.line}")


def set_process_name(name: str) -> str:
    """Set the process name written by the yy encoder; return the previous one."""
    global _process_name
    previous, _process_name = _process_name, name
    return previous


# --- configuration -------------------------------------------------------


@dataclass
class EncoderConfig:
    """Keys and value encoders used when encoding entries."""

    message_key: str = ""
    level_key: str = ""
    time_key: str = ""
    name_key: str = ""
    caller_key: str = ""
    stacktrace_key: str = ""
    line_ending: str = ""
    encode_level: Optional[Callable] = None
    encode_time: Optional[Callable] = None
    encode_duration: Optional[Callable] = None
    encode_caller: Optional[Callable] = None
    encode_name: Optional[Callable] = None

    @classmethod
    def production(cls) -> "EncoderConfig":
        """The usual production settings."""
        return cls(
            message_key="msg",
            level_key="level",
            time_key="ts",
            name_key="logger",
            caller_key="caller",
            stacktrace_key="stacktrace",
            line_ending="\n",
            encode_level=lowercase_level_encoder,
            encode_time=epoch_time_encoder,
            encode_duration=seconds_duration_encoder,
            encode_caller=_short_caller_encoder,
        )


# --- encoders ------------------------------------------------------------


class YYEncoder:
    """JSON encoder that writes pid and process name ahead of the message."""

    def __init__(self, config: Optional[EncoderConfig] = None, *, spaced: bool = False):
        self.config = config if config is not None else EncoderConfig()
        self.spaced = spaced
        self._buf: list[str] = []
        self._open_namespaces = 0

    # buffer plumbing
    def _write(self, text: str) -> None:
        if text:
            self._buf.append(text)

    def _add_element_separator(self) -> None:
        if not self._buf or self._buf[-1][-1] in "{[:, ":
            return
        self._write(", " if self.spaced else ",")

    def _add_key(self, key: str) -> None:
        self._add_element_separator()
        self._write(f'"{json_escape(key)}":' + (" " if self.spaced else ""))

    def _close_open_namespaces(self) -> None:
        self._write("}" * self._open_namespaces)

    def _clone_empty(self) -> "YYEncoder":
        clone = type(self)(self.config, spaced=self.spaced)
        clone._open_namespaces = self._open_namespaces
        return clone

    # keyed additions
    def add_array(self, key: str, arr) -> None:
        self._add_key(key)
        self.append_array(arr)

    def add_object(self, key: str, obj) -> None:
        self._add_key(key)
        self.append_object(obj)

    def add_binary(self, key: str, value) -> None:
        self.add_string(key, base64.b64encode(bytes(value or b"")).decode("ascii"))

    def add_byte_string(self, key: str, value) -> None:
        self._add_key(key)
        self.append_byte_string(value)

    def add_bool(self, key: str, value: bool) -> None:
        self._add_key(key)
        self.append_bool(value)

    def add_complex(self, key: str, value) -> None:
        self._add_key(key)
        self.append_complex(value)

    def add_duration(self, key: str, value) -> None:
        self._add_key(key)
        self.append_duration(value)

    def add_float(self, key: str, value: float) -> None:
        self._add_key(key)
        self.append_float(value)

    def add_float32(self, key: str, value: float) -> None:
        self._add_key(key)
        self.append_float32(value)

    def add_int(self, key: str, value: int) -> None:
        self._add_key(key)
        self.append_int(value)

    def add_uint(self, key: str, value: int) -> None:
        if value < 0:
            raise ValueError(f"unsigned value must not be negative: {value}")
        self._add_key(key)
        self.append_uint(value)

    def add_reflected(self, key: str, obj) -> None:
        text = _reflect(obj)
        self._add_key(key)
        self._write(text)

    def open_namespace(self, key: str) -> None:
        self._add_key(key)
        self._write("{")
        self._open_namespaces += 1

    def add_string(self, key: str, value: str) -> None:
        self._add_key(key)
        self.append_string(value)

    def add_time(self, key: str, value: datetime) -> None:
        self._add_key(key)
        self.append_time(value)

    # array elements
    def append_array(self, arr) -> None:
        self._add_element_separator()
        self._write("[")
        try:
            _marshaler(arr, "marshal_log_array")(self)
        finally:
            self._write("]")

    def append_object(self, obj) -> None:
        self._add_element_separator()
        self._write("{")
        try:
            _marshaler(obj, "marshal_log_object")(self)
        finally:
            self._write("}")

    def append_bool(self, value: bool) -> None:
        self._add_element_separator()
        self._write("true" if value else "false")

    def append_byte_string(self, value) -> None:
        self._add_element_separator()
        self._write('"' + json_escape(bytes(value or b"")) + '"')

    def append_complex(self, value) -> None:
        value = complex(value)
        self._add_element_separator()
        self._write(f'"{_format_float(value.real)}+{_format_float(value.imag)}i"')

    def append_duration(self, value) -> None:
        mark = len(self._buf)
        if self.config.encode_duration is not None:
            self.config.encode_duration(value, self)
        if mark == len(self._buf):
            self.append_int(_duration_nanos(value))

    def append_float(self, value: float) -> None:
        self._append_float(float(value), 64)

    def append_float32(self, value: float) -> None:
        self._append_float(_to_float32(float(value)), 32)

    def _append_float(self, value: float, bits: int) -> None:
        self._add_element_separator()
        text = _format_float(value, bits)
        if text in ("NaN", "+Inf", "-Inf"):
            text = f'"{text}"'
        self._write(text)

    def append_int(self, value: int) -> None:
        self._add_element_separator()
        self._write(str(int(value)))

    def append_uint(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"unsigned value must not be negative: {value}")
        self.append_int(value)

    def append_reflected(self, value) -> None:
        text = _reflect(value)
        self._add_element_separator()
        self._write(text)

    def append_string(self, value: str) -> None:
        self._add_element_separator()
        self._write('"' + json_escape(value) + '"')

    def append_time(self, value: datetime) -> None:
        mark = len(self._buf)
        if self.config.encode_time is not None:
            self.config.encode_time(value, self)
        if mark == len(self._buf):
            self.append_int(_unix_micros(value) * 1000)

    # whole-encoder operations
    def clone(self) -> "YYEncoder":
        """Return an independent copy holding the same context."""
        clone = self._clone_empty()
        clone._buf = list(self._buf)
        return clone

    def reset(self) -> None:
        """Discard everything written so far."""
        self._buf.clear()

    def getvalue(self) -> str:
        """Return what has been written so far."""
        return "".join(self._buf)

    def _add_entry_context(self, final: "YYEncoder", entry: Entry) -> None:
        final._add_key("pid")
        final.append_int(os.getpid())
        final.add_string("procname", _process_name)
        cfg = final.config
        if entry.caller.defined and cfg.caller_key:
            final._add_key(cfg.caller_key)
            mark = len(final._buf)
            full_name_caller_encoder(entry.caller, final)
            if mark == len(final._buf):
                final.append_string(str(entry.caller))

    def encode_entry(self, entry: Entry, fields=()) -> str:
        """Encode an entry with this encoder's context and the given fields as one line."""
        final = self._clone_empty()
        cfg = final.config
        final._write("{")

        if cfg.level_key:
            final._add_key(cfg.level_key)
            mark = len(final._buf)
            if cfg.encode_level is not None:
                cfg.encode_level(entry.level, final)
            if mark == len(final._buf):
                final.append_string(str(entry.level))
        if cfg.time_key:
            final.add_time(cfg.time_key, entry.time)
        if entry.logger_name and cfg.name_key:
            final._add_key(cfg.name_key)
            mark = len(final._buf)
            name_encoder = cfg.encode_name or (lambda name, enc: enc.append_string(name))
            name_encoder(entry.logger_name, final)
            if mark == len(final._buf):
                final.append_string(entry.logger_name)

        self._add_entry_context(final, entry)

        if cfg.message_key:
            final._add_key(cfg.message_key)
            final.append_string(entry.message)
        if self._buf:
            final._add_element_separator()
            final._buf.extend(self._buf)
        for item in fields:
            item.add_to(final)
        final._close_open_namespaces()
        if entry.stack and cfg.stacktrace_key:
            final.add_string(cfg.stacktrace_key, entry.stack)
        final._write("}")
        final._write(cfg.line_ending or "\n")
        return final.getvalue()


class JSONEncoder(YYEncoder):
    """Plain JSON encoder: no pid or process name, caller from the config."""

    def _add_entry_context(self, final: YYEncoder, entry: Entry) -> None:
        cfg = final.config
        if entry.caller.defined and cfg.caller_key:
            final._add_key(cfg.caller_key)
            mark = len(final._buf)
            if cfg.encode_caller is not None:
                cfg.encode_caller(entry.caller, final)
            if mark == len(final._buf):
                final.append_string(str(entry.caller))

    def encode_entry(self, entry: Entry, fields=()) -> str:
        """Encode an entry with this encoder's context and the given fields as one line."""
        return super().encode_entry(entry, fields)