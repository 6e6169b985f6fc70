# yylog

Structured logging for services. Each record is one line of JSON or console
text. Records go to standard output, or to a log file that a background
thread writes out. The log file can rotate by hour or by date.

The package has no dependencies outside the standard library.

## Installation

```
pip install yylog
```

## Quick start

Importing `yylog.logger` sets up a global logger. It writes JSON lines to
standard output at info level and above. Call `init_log` with options to
configure it differently:

```python
from yylog.config import set_target, set_encode, process_name, log_file_path, log_file_rotate
from yylog.encoder import Field
from yylog.logger import init_log, info, warn, set_log_level, sync

init_log(
    process_name("myservice"),
    set_target("asyncfile"),
    set_encode("yyjson"),
    log_file_path("./log"),
    log_file_rotate("date"),
)

info("request handled", Field("user", "alice"), Field("status", 200))
set_log_level("debug")
warn("slow response", Field("ms", 1250))
sync()
```

`init_log` changes the existing global logger in place and returns it.
References obtained earlier through `get_logger()` therefore keep working.

## Options (`yylog.config`)

| Option                 | Meaning                                                    |
|------------------------|------------------------------------------------------------|
| `set_target(name)`     | `stdout` (default) or `asyncfile`                          |
| `set_encode(enc)`      | `json` (default), `console` or `yyjson`; others mean `json`|
| `log_file_name(name)`  | base name of the log file, written as `name.log`           |
| `log_file_path(path)`  | directory of the log file (default `../log`), created if missing |
| `log_file_rotate(r)`   | `hour` or `date`; any other value is ignored               |
| `with_pid(yes)`        | add a `pid` field (default on; `json`/`console` only)      |
| `process_name(name)`   | value of the `procname` field                              |
| `host_name(name)`      | add a `hostname` field                                     |

`init_yy_server_log()` applies a fixed set of options. It writes JSON to
`/data/yy/log/<program>/<program>.gfy.log`.

## Encodings

Every record has a `level` key and a `timestamp` key, formatted as
`YYYY-MM-DD HH:MM:SS`. It also has a `caller` key, a `msg` key, and the fields
that were passed in.

- `json`: when enabled, `pid`, `procname` and `hostname` are added as
  ordinary context fields. The caller is written as `dir/file:line`.
- `yyjson`: `pid` and `procname` always come right before the caller and
  message. The caller is written as `dir/file:function:line`.
- `console`: the time, level, caller and message are separated by tabs.
  The fields follow as one JSON object.

The encoders live in `yylog.encoder`: `YYEncoder`, `JSONEncoder`,
`EncoderConfig`, `Entry` and `Field`. The console encoder is in `yylog.core`.
A `Field` value is encoded according to its Python type:

- bool, int, float, complex and str are written as JSON values.
- bytes are written as base64.
- `datetime` and `timedelta` values are supported.
- Exceptions are written as their text.
- Lists and tuples become arrays.
- Objects with `marshal_log_object` or `marshal_log_array` methods are
  encoded through those methods.
- Anything else is serialised with `json`.

## Levels

These module-level functions log through the global logger:

- `debug`, `info`, `warn`, `error`, `panic` and `fatal` take a message and
  `Field`s.
- `log(level, *values)` and `logf(level, fmt, *values)` take a level name,
  then values or a format with `%v`/`%s`/`%d`-style verbs.

An unknown level name logs at info.

`set_log_level` accepts `debug`, `info`, `warn`, `error`, `fatal`, and the
aliases `all` (debug) and `off` / `none` (fatal). Matching ignores case.
Any other value raises `ValueError`.

`panic(...)` writes the record and then raises `yylog.core.PanicError`.
`fatal(...)` writes the record and then raises `SystemExit(1)`. Both do so
whatever the current level is.

## Other entry points

- `get_logger()` returns the global `YYLogger`. It offers:
  - `write(data)`, which logs at info and returns the length.
  - `log`, `logf`, `infof` and `error`.
  - `write_log(level, msg, *fields)`.
  - `get_zlog(caller_skip)` and `clone(caller_skip)`.
- `get_std_logger()` returns a standard-library `logging.Logger`. Its records
  are forwarded to the global logger at info level.

## Session logs (`yylog.session`)

A session collects fields across a unit of work and writes them all in one
record. The session belongs to the current `contextvars` context.

```python
from yylog.encoder import Field
from yylog.session import log_start, log_append, log_flush

log_start(Field("request_id", "r-1"))
log_append(Field("step", "auth"))
log_flush("request finished", Field("status", 200))
```

- `log_start` returns the `SessionLog`. If a session already exists, it adds
  the fields to that session instead.
- `log_append` does nothing when no session is active.
- `log_flush` writes an info record, merging the session's fields with the
  ones passed in. It leaves the session unchanged.

When a key is added again, the later value replaces the earlier one. The key
keeps its first position in the record.

## Asynchronous log files (`yylog.asynclog`)

The writer behind the `asyncfile` target can also be used on its own:

```python
from yylog.asynclog import new_level_log, Priority

lf = new_level_log("service.log", Priority.INFO)
lf.info("hello %d", 123)   # "<RFC 3339 time> [INFO] hello 123"
lf.flush()
```

- `new_log_file(filename)` returns one shared `LogFile` per file name.
- Messages go onto a queue of up to 100,000 entries. When the queue is full,
  new messages are dropped.
- A daemon thread flushes every registered file every 0.1 s, writing at most
  10,000 messages per pass.
- `flush()` and `flush_all()` flush on demand.

`LogFile` settings are plain attributes:

- `flags`: `STD_FLAG` prefixes each message with the time; `NO_FLAG` does not.
- `newline`
- `use_cache`: when `False`, writes go straight to the file.
- `probability`: the share of `write_json` and level messages that are kept.
- `level`
- `rotate`: `LogRotate.HOUR` or `LogRotate.DATE` appends `.YYYYMMDDHH` or
  `.YYYYMMDD` to the file name.

`write_json(data)` writes compact JSON lines.

## What it does not do

The package is a library only. It installs no command-line programs.

Output goes either to standard output or to a local file. There is no
network, syslog or database output. Old rotated files are never compressed
or deleted.