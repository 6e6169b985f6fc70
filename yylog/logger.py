"""The process-wide logger and the shortcut functions that write through it."""

from __future__ import annotations

import logging
import math
import os
import sys
import threading
from decimal import Decimal
from typing import Optional

from .config import (
    default_config,
    log_file_name,
    log_file_path,
    process_name,
    set_encode,
    set_target,
)
from .core import AtomicLevel, ZLogger, build_logger

_LEVEL_METHODS = {
    "info": "info",
    "debug": "debug",
    "warn": "warn",
    "error": "error",
    "panic": "panic",
    "dpanic": "dpanic",
    "fatal": "fatal",
}

_LEVEL_ALIASES = {
    "debug": "debug",
    "info": "info",
    "warn": "warn",
    "error": "error",
    "fatal": "fatal",
    "all": "debug",
    "off": "fatal",
    "none": "fatal",
}

# Frames between a shortcut's caller and the core logger call:
# the shortcut itself and YYLogger.write_log.
_CALLER_SKIP = 2


def _program_name() -> str:
    return os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "python"


# --- value formatting ----------------------------------------------------


def _format_float(value: float) -> str:
    """Shortest representation, switching to exponent form as %v does."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign = "-" if value < 0 else ""
    dec = Decimal(repr(abs(value))).normalize()
    _, digits, exponent = dec.as_tuple()
    ndigits = len(digits)
    point = ndigits + exponent
    eprec = 6
    if eprec > ndigits and ndigits >= point:
        eprec = ndigits
    exp = point - 1
    if exp < -4 or exp >= eprec:
        text = "".join(str(d) for d in digits)
        mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
        return f"{sign}{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp):02d}"
    return sign + format(dec, "f")


def _format_value(value) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, (bytes, bytearray)):
        return "[" + " ".join(str(b) for b in value) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        pairs = (f"{_format_value(k)}:{_format_value(v)}" for k, v in value.items())
        return "map[" + " ".join(pairs) + "]"
    return str(value)


def _type_name(value) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (bytes, bytearray)):
        return "[]uint8"
    return type(value).__name__


def _sprint(args) -> str:
    """Concatenate values, with a space between two neighbours that are both non-strings."""
    parts = []
    previous_is_str = True
    for position, value in enumerate(args):
        is_str = isinstance(value, str)
        if position and not is_str and not previous_is_str:
            parts.append(" ")
        parts.append(_format_value(value))
        previous_is_str = is_str
    return "".join(parts)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _render(verb: str, flags: str, prec: Optional[str], value) -> Optional[str]:
    plus = "+" if "+" in flags else ""
    if verb == "v":
        return _format_value(value)
    if verb == "s":
        if value is None or isinstance(value, (bool, int, float)):
            return None
        text = value.decode("utf-8", "replace") if isinstance(value, (bytes, bytearray)) else _format_value(value)
        return text[: int(prec or 0)] if prec is not None else text
    if verb == "q":
        if isinstance(value, str):
            return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t") + '"'
        return None
    if verb == "d":
        if isinstance(value, int) and not isinstance(value, bool):
            return (plus if value >= 0 else "") + str(value)
        return None
    if verb in "boxX":
        if isinstance(value, int) and not isinstance(value, bool):
            text = format(value, verb)
            if "#" in flags and verb in "xX":
                text = ("-" if value < 0 else "") + "0" + verb + text.lstrip("-")
            return text
        if verb in "xX" and isinstance(value, (str, bytes, bytearray)):
            raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
            text = raw.hex()
            return text.upper() if verb == "X" else text
        return None
    if verb in "eEfFgG":
        if not _is_number(value):
            return None
        number = float(value)
        if verb in "gG" and prec is None:
            text = _format_float(number)
            return (plus if number >= 0 else "") + (text.upper() if verb == "G" else text)
        spec = f"{plus}.{prec if prec is not None else 6}{verb}"
        return format(number, spec)
    if verb == "t":
        return ("true" if value else "false") if isinstance(value, bool) else None
    if verb == "c":
        return chr(value) if isinstance(value, int) and not isinstance(value, bool) else None
    if verb == "T":
        return _type_name(value)
    return None


def _pad(text: str, flags: str, width: str, numeric: bool) -> str:
    if not width:
        return text
    size = int(width)
    if "-" in flags:
        return text.ljust(size)
    if "0" in flags and numeric:
        sign = text[0] if text[:1] in ("-", "+") else ""
        return sign + text[len(sign):].rjust(size - len(sign), "0")
    return text.rjust(size)


def _sprintf(fmt: str, args) -> str:
    """Format with %-verbs (v, s, q, d, b, o, x, X, e, f, g, t, c, T)."""
    out = []
    pos = 0
    argi = 0
    length = len(fmt)
    while pos < length:
        start = fmt.find("%", pos)
        if start < 0:
            out.append(fmt[pos:])
            break
        out.append(fmt[pos:start])
        cursor = start + 1
        flags_end = cursor
        while flags_end < length and fmt[flags_end] in "-+# 0":
            flags_end += 1
        flags = fmt[cursor:flags_end]
        width_end = flags_end
        while width_end < length and fmt[width_end].isdigit():
            width_end += 1
        width = fmt[flags_end:width_end]
        prec = None
        verb_pos = width_end
        if verb_pos < length and fmt[verb_pos] == ".":
            prec_end = verb_pos + 1
            while prec_end < length and fmt[prec_end].isdigit():
                prec_end += 1
            prec = fmt[verb_pos + 1 : prec_end]
            verb_pos = prec_end
        if verb_pos >= length:
            out.append("%!(NOVERB)")
            pos = length
            break
        verb = fmt[verb_pos]
        pos = verb_pos + 1
        if verb == "%":
            out.append("%")
            continue
        if argi >= len(args):
            out.append(f"%!{verb}(MISSING)")
            continue
        value = args[argi]
        argi += 1
        try:
            text = _render(verb, flags, prec, value)
        except (TypeError, ValueError, OverflowError):
            text = None
        if text is None:
            out.append(f"%!{verb}({_type_name(value)}={_format_value(value)})")
        else:
            out.append(_pad(text, flags, width, _is_number(value)))
    if argi < len(args):
        extra = ", ".join(f"{_type_name(v)}={_format_value(v)}" for v in args[argi:])
        out.append(f"%!(EXTRA {extra})")
    return "".join(out)


# --- the logger ----------------------------------------------------------


class YYLogger:
    """A structured logger together with the level that controls it."""

    def __init__(self, logger: ZLogger, level: AtomicLevel):
        self.logger = logger
        self.level = level

    def get_zlog(self, caller_skip: int = 0) -> ZLogger:
        """Return the underlying logger, reporting callers caller_skip frames further out."""
        return self.logger.with_caller_skip(caller_skip) if caller_skip else self.logger

    def clone(self, caller_skip: int = 0) -> "YYLogger":
        """Return a new logger sharing output and level with this one."""
        return YYLogger(self.get_zlog(caller_skip), self.level)

    def write(self, data) -> int:
        """Log data at info level; return its length."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            text = bytes(data).decode("utf-8", "replace")
        else:
            text = str(data)
        self.write_log("info", text)
        return len(data)

    def log(self, *args) -> None:
        """Log the values, joined, at info level."""
        self.write_log("info", _sprint(args))

    def logf(self, fmt: str, *args) -> None:
        """Log a formatted message at info level."""
        self.write_log("info", _sprintf(fmt, args))

    def error(self, msg: str) -> None:
        """Log msg at error level."""
        self.write_log("error", msg)

    def infof(self, fmt: str, *args) -> None:
        """Log a formatted message at info level."""
        self.write_log("info", _sprintf(fmt, args))

    def write_log(self, level: str, msg: str, *fields) -> None:
        """Log msg with fields at the named level; unknown names mean info."""
        getattr(self.logger, _LEVEL_METHODS.get(level, "info"))(msg, *fields)


_default: Optional[YYLogger] = None
_default_lock = threading.Lock()
_std_logger: Optional[logging.Logger] = None


class _ForwardHandler(logging.Handler):
    """Sends standard-library log records to the global logger at info level."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            self.handleError(record)
            return
        if message.endswith("\n"):
            message = message[:-1]
        current = _default
        if current is not None:
            current.write_log("info", message)


def _make_std_logger() -> logging.Logger:
    std = logging.getLogger("yylog.std")
    std.setLevel(logging.DEBUG)
    std.propagate = False
    if not any(isinstance(handler, _ForwardHandler) for handler in std.handlers):
        std.addHandler(_ForwardHandler())
    return std


def init_log(*args) -> YYLogger:
    """Build the global logger from the given options and return it.

    An existing global logger is updated in place, so references to it stay valid.
    """
    global _default, _std_logger
    config = default_config()
    for option in args:
        option(config)
    level, zlogger = build_logger(config)
    zlogger = zlogger.with_caller_skip(_CALLER_SKIP)
    with _default_lock:
        if _default is None:
            _default = YYLogger(zlogger, level)
        else:
            _default.logger = zlogger
            _default.level = level
        _std_logger = _make_std_logger()
        return _default


def init_yy_server_log() -> YYLogger:
    """Set up the global logger with the usual server settings."""
    procname = _program_name()
    return init_log(
        set_target("asyncfile"),
        set_encode("json"),
        process_name(procname),
        log_file_name(procname + ".gfy"),
        log_file_path("/data/yy/log/" + procname),
    )


def get_logger() -> YYLogger:
    """Return the global logger."""
    return _default


def get_std_logger() -> logging.Logger:
    """Return a standard-library logger whose records go to the global logger."""
    return _std_logger


def log(level: str, *args) -> None:
    """Log the values, joined, at the named level."""
    _default.write_log(level, _sprint(args))


def logf(level: str, fmt: str, *args) -> None:
    """Log a formatted message at the named level."""
    _default.write_log(level, _sprintf(fmt, args))


def debug(msg: str, *args) -> None:
    """Log msg with fields at debug level."""
    _default.write_log("debug", msg, *args)


def info(msg: str, *args) -> None:
    """Log msg with fields at info level."""
    _default.write_log("info", msg, *args)


def warn(msg: str, *args) -> None:
    """Log msg with fields at warn level."""
    _default.write_log("warn", msg, *args)


def error(msg: str, *args) -> None:
    """Log msg with fields at error level."""
    _default.write_log("error", msg, *args)


def panic(msg: str, *args) -> None:
    """Log msg with fields at panic level, then raise PanicError."""
    _default.write_log("panic", msg, *args)


def fatal(msg: str, *args) -> None:
    """Log msg with fields at fatal level, then raise SystemExit(1)."""
    _default.write_log("fatal", msg, *args)


def sync() -> None:
    """Write out anything the global logger still holds."""
    _default.logger.sync()


def set_log_level(level: str) -> None:
    """Set the global threshold: debug (all), info, warn, error, fatal (off, none)."""
    name = _LEVEL_ALIASES.get(level.lower())
    if name is None:
        raise ValueError("not support level")
    _default.level.set(name)


init_log(process_name(_program_name()), set_target("stdout"))