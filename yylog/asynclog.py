"""Log files written by a background flusher, with optional rotation and levels."""

from __future__ import annotations

import dataclasses
import json
import os
import queue
import random
import threading
import time
from datetime import datetime
from enum import IntEnum
from typing import Any, BinaryIO, Callable, Optional

NO_FLAG = 0
STD_FLAG = 3

_NEWLINE = "\n"
_QUEUE_SIZE = 100_000
_FLUSH_BATCH = 10_000
_FLUSH_INTERVAL = 0.1


class Priority(IntEnum):
    """Severity threshold of a levelled log file."""

    ALL = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    FATAL = 5
    OFF = 6


_LEVEL_TITLES = {
    Priority.DEBUG: "[DEBUG]",
    Priority.INFO: "[INFO]",
    Priority.WARN: "[WARN]",
    Priority.ERROR: "[ERROR]",
    Priority.FATAL: "[FATAL]",
}


class LogRotate(IntEnum):
    """How a log file is split over time."""

    NONE = 0
    HOUR = 1
    DATE = 2


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _rfc3339(moment: datetime) -> str:
    text = moment.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def _json_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class LogFile:
    """A log file fed through an in-memory queue or written directly.

    Settings are plain attributes: ``flags`` (NO_FLAG or STD_FLAG),
    ``rotate``, ``use_cache``, ``probability``, ``newline``, ``level``
    and ``clock``.
    """

    def __init__(self, filename: str):
        self.filename = filename
        self.flags = STD_FLAG
        self.newline = _NEWLINE
        self.rotate = LogRotate.NONE
        self.use_cache = True
        self.probability = 1.1
        self.level = Priority.ALL
        self.clock: Callable[[], datetime] = _local_now
        self._queue: queue.Queue[str] = queue.Queue(maxsize=_QUEUE_SIZE)
        self._sync_lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._file: Optional[BinaryIO] = None
        self._file_path = ""
        self._suffix = ""

    # public writing API
    def write(self, msg: str) -> None:
        """Write one message, prefixed with the time when flags is STD_FLAG."""
        if self.flags == STD_FLAG:
            msg = _rfc3339(self.clock()) + " " + msg + self.newline
        else:
            msg = msg + self.newline
        if self.use_cache:
            self._enqueue(msg)
        else:
            self._direct_write(msg.encode("utf-8"))

    def write_json(self, data: Any) -> None:
        """Write data as one line of compact JSON, subject to the probability."""
        if not self._sampled():
            return
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=_json_default)
        text += "\n"
        if self.use_cache:
            self._enqueue(text)
        else:
            self._direct_write(text.encode("utf-8"))

    def flush(self) -> None:
        """Write up to one batch of queued messages to the current file."""
        with self._sync_lock:
            self._drain()

    def close(self) -> None:
        """Close the handle kept for direct writes."""
        with self._file_lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    # levelled writing
    def debug(self, fmt: str, *args) -> None:
        self._write_level(Priority.DEBUG, fmt, args)

    def info(self, fmt: str, *args) -> None:
        self._write_level(Priority.INFO, fmt, args)

    def warn(self, fmt: str, *args) -> None:
        self._write_level(Priority.WARN, fmt, args)

    def error(self, fmt: str, *args) -> None:
        self._write_level(Priority.ERROR, fmt, args)

    def fatal(self, fmt: str, *args) -> None:
        self._write_level(Priority.FATAL, fmt, args)

    # internals
    def _sampled(self) -> bool:
        return not (self.probability < 1.0 and random.random() > self.probability)

    def _write_level(self, level: Priority, fmt: str, args: tuple) -> None:
        if not self._sampled():
            return
        if level >= self.level:
            msg = fmt % args if args else fmt
            self.write(_LEVEL_TITLES.get(level, "") + " " + msg)

    def _enqueue(self, msg: str) -> None:
        try:
            self._queue.put_nowait(msg)
        except queue.Full:
            pass

    def _filename_suffix(self) -> str:
        if self.rotate == LogRotate.NONE:
            return ""
        if self.rotate == LogRotate.DATE:
            return self.clock().strftime("%Y%m%d")
        return self.clock().strftime("%Y%m%d%H")

    def _path_for(self, suffix: str) -> str:
        return f"{self.filename}.{suffix}" if suffix else self.filename

    def _drain(self) -> None:
        path = self._path_for(self._filename_suffix())
        with self._file_lock:
            handle = open(path, "ab")
        with handle:
            batch = []
            for _ in range(_FLUSH_BATCH):
                try:
                    batch.append(self._queue.get_nowait())
                except queue.Empty:
                    break
            if batch:
                handle.write("".join(batch).encode("utf-8"))

    def _flush_if_idle(self) -> None:
        if not self._sync_lock.acquire(blocking=False):
            return
        try:
            self._drain()
        finally:
            self._sync_lock.release()

    def _cached_handle_valid(self, suffix: str) -> bool:
        if self._file is None or suffix != self._suffix:
            return False
        try:
            on_disk = os.stat(self._file_path)
            opened = os.fstat(self._file.fileno())
        except OSError:
            return False
        return (on_disk.st_dev, on_disk.st_ino) == (opened.st_dev, opened.st_ino)

    def _direct_write(self, data: bytes) -> None:
        suffix = self._filename_suffix()
        path = self._path_for(suffix)
        with self._file_lock:
            if not self._cached_handle_valid(suffix):
                handle = open(path, "ab")
                print("open log file:", path)
                if self._file is not None:
                    self._file.close()
                self._file, self._file_path, self._suffix = handle, path, suffix
            self._file.write(data)
            self._file.flush()


_files: dict[str, LogFile] = {}
_files_lock = threading.Lock()
_flusher: Optional[threading.Thread] = None


def _flush_loop() -> None:
    while True:
        time.sleep(_FLUSH_INTERVAL)
        with _files_lock:
            files = list(_files.values())
        for log_file in files:
            try:
                log_file._flush_if_idle()
            except OSError:
                pass


def _ensure_flusher() -> None:
    global _flusher
    if _flusher is None:
        _flusher = threading.Thread(target=_flush_loop, name="yylog-flusher", daemon=True)
        _flusher.start()


def new_log_file(filename: str) -> LogFile:
    """Return the log file registered under filename, creating it if needed."""
    with _files_lock:
        log_file = _files.get(filename)
        if log_file is None:
            log_file = LogFile(filename)
            _files[filename] = log_file
        _ensure_flusher()
    return log_file


def new_level_log(filename: str, level: Priority) -> LogFile:
    """Return a registered log file that only writes messages at level or above."""
    log_file = new_log_file(filename)
    log_file.level = Priority(level)
    return log_file


def flush_all() -> None:
    """Flush every registered log file."""
    with _files_lock:
        files = list(_files.values())
    for log_file in files:
        log_file.flush()