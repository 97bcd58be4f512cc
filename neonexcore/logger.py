"""Levelled, structured logging with text and JSON formatters."""

from __future__ import annotations

import io
import json
import os
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping

_RESET = "\033[0m"


class LogLevel(IntEnum):
    """Severity of a log entry, ordered from least to most severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4

    def __str__(self) -> str:
        return self.name

    def color(self) -> str:
        """ANSI colour escape used for this level."""
        return _COLORS.get(self, _RESET)


_COLORS = {
    LogLevel.DEBUG: "\033[36m",
    LogLevel.INFO: "\033[32m",
    LogLevel.WARN: "\033[33m",
    LogLevel.ERROR: "\033[31m",
    LogLevel.FATAL: "\033[35m",
}


@dataclass
class Entry:
    """A single log record handed to a formatter."""

    time: datetime
    level: LogLevel
    message: str
    fields: dict[str, Any] = field(default_factory=dict)
    file: str = ""
    line: int = 0
    context: Any = None


@dataclass
class TextFormatter:
    """Formats entries as a single human-readable line."""

    disable_colors: bool = False
    full_timestamp: bool = True
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"

    def format(self, entry: Entry) -> bytes:
        color = "" if self.disable_colors else entry.level.color()
        reset = "" if self.disable_colors else _RESET
        timestamp = entry.time.strftime(self.timestamp_format)
        parts = [
            f"{color}[{timestamp}]{reset} ",
            f"{color}{str(entry.level):<5}{reset} ",
        ]
        if entry.file:
            parts.append(f"[{entry.file}:{entry.line}] ")
        parts.append(entry.message)
        if entry.fields:
            parts.append(" | " + ", ".join(f"{k}={v}" for k, v in entry.fields.items()))
        parts.append("\n")
        return "".join(parts).encode("utf-8")


def _json_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    base = moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}"
    offset = moment.utcoffset()
    if not offset:
        return base + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{base}{sign}{total // 3600:02d}:{total % 3600 // 60:02d}"


@dataclass
class JSONFormatter:
    """Formats entries as one JSON object per line."""

    pretty_print: bool = False

    def format(self, entry: Entry) -> bytes:
        data: dict[str, Any] = {
            "time": _json_time(entry.time),
            "level": str(entry.level),
            "message": entry.message,
        }
        if entry.file:
            data["caller"] = f"{entry.file}:{entry.line}"
        data.update(entry.fields)
        if self.pretty_print:
            text = json.dumps(
                data, indent=2, sort_keys=True, default=str, allow_nan=False, ensure_ascii=False
            )
        else:
            text = json.dumps(
                data,
                separators=(",", ":"),
                sort_keys=True,
                default=str,
                allow_nan=False,
                ensure_ascii=False,
            )
        return (text + "\n").encode("utf-8")


class _StdoutWriter:
    """Writes to whatever sys.stdout is at the time of writing."""

    def write(self, data: bytes) -> int:
        sys.stdout.write(data.decode("utf-8"))
        return len(data)


def _emit(writer: Any, data: bytes) -> None:
    try:
        if isinstance(writer, io.TextIOBase):
            writer.write(data.decode("utf-8"))
        else:
            writer.write(data)
    except (OSError, ValueError):
        pass


class Logger:
    """A thread-safe logger writing formatted entries to a set of writers."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._level = LogLevel.INFO
        self._formatter: Any = TextFormatter()
        self._writers: list[Any] = [_StdoutWriter()]
        self._fields: dict[str, Any] = {}
        self._context: Any = None
        self._caller = True
        self._colorize = True

    def set_level(self, level: LogLevel) -> None:
        with self._lock:
            self._level = LogLevel(level)

    def set_formatter(self, formatter: Any) -> None:
        with self._lock:
            self._formatter = formatter

    def add_writer(self, writer: Any) -> None:
        with self._lock:
            self._writers.append(writer)

    def set_writers(self, writers: list[Any]) -> None:
        """Replace every writer with the given ones."""
        with self._lock:
            self._writers = list(writers)

    def enable_caller(self, enabled: bool) -> None:
        with self._lock:
            self._caller = enabled

    def enable_color(self, enabled: bool) -> None:
        with self._lock:
            self._colorize = enabled

    def _derive(self, fields: dict[str, Any], context: Any) -> Logger:
        child = Logger()
        with self._lock:
            child._level = self._level
            child._formatter = self._formatter
            child._writers = list(self._writers)
            child._fields = fields
            child._context = context
            child._caller = self._caller
            child._colorize = self._colorize
        return child

    def with_fields(self, fields: Mapping[str, Any]) -> Logger:
        """Return a new logger that adds the given fields to every entry."""
        with self._lock:
            merged = {**self._fields, **fields}
            context = self._context
        return self._derive(merged, context)

    def with_context(self, ctx: Any) -> Logger:
        """Return a new logger whose entries carry the given context."""
        with self._lock:
            fields = self._fields
        return self._derive(fields, ctx)

    def debug(self, msg: str, *args: Mapping[str, Any]) -> None:
        self._log(LogLevel.DEBUG, msg, args, 2)

    def info(self, msg: str, *args: Mapping[str, Any]) -> None:
        self._log(LogLevel.INFO, msg, args, 2)

    def warn(self, msg: str, *args: Mapping[str, Any]) -> None:
        self._log(LogLevel.WARN, msg, args, 2)

    def error(self, msg: str, *args: Mapping[str, Any]) -> None:
        self._log(LogLevel.ERROR, msg, args, 2)

    def fatal(self, msg: str, *args: Mapping[str, Any]) -> None:
        """Log at FATAL level and exit with status 1."""
        self._log(LogLevel.FATAL, msg, args, 2)
        raise SystemExit(1)

    def _log(
        self,
        level: LogLevel,
        msg: str,
        field_sets: tuple[Mapping[str, Any], ...],
        stacklevel: int,
    ) -> None:
        with self._lock:
            if level < self._level:
                return
            merged = dict(self._fields)
            for extra in field_sets:
                merged.update(extra)
            file, line = "", 0
            if self._caller:
                try:
                    frame = sys._getframe(stacklevel)
                except ValueError:
                    frame = None
                if frame is not None:
                    file = os.path.basename(frame.f_code.co_filename)
                    line = frame.f_lineno
            entry = Entry(
                time=datetime.now().astimezone(),
                level=level,
                message=msg,
                fields=merged,
                file=file,
                line=line,
                context=self._context,
            )
            formatter = self._formatter
            writers = list(self._writers)

        try:
            data = formatter.format(entry)
        except (TypeError, ValueError) as exc:
            print(f"Failed to format log entry: {exc}", file=sys.stderr)
            return
        for writer in writers:
            _emit(writer, data)


_default = Logger()


def default_logger() -> Logger:
    """The process-wide logger used by the module-level functions."""
    return _default


def set_global_level(level: LogLevel) -> None:
    _default.set_level(level)


def set_global_formatter(formatter: Any) -> None:
    _default.set_formatter(formatter)


def add_global_writer(writer: Any) -> None:
    _default.add_writer(writer)


def enable_global_caller(enabled: bool) -> None:
    _default.enable_caller(enabled)


def enable_global_color(enabled: bool) -> None:
    _default.enable_color(enabled)


def debug(msg: str, *args: Mapping[str, Any]) -> None:
    _default._log(LogLevel.DEBUG, msg, args, 2)


def info(msg: str, *args: Mapping[str, Any]) -> None:
    _default._log(LogLevel.INFO, msg, args, 2)


def warn(msg: str, *args: Mapping[str, Any]) -> None:
    _default._log(LogLevel.WARN, msg, args, 2)


def error(msg: str, *args: Mapping[str, Any]) -> None:
    _default._log(LogLevel.ERROR, msg, args, 2)


def fatal(msg: str, *args: Mapping[str, Any]) -> None:
    """Log at FATAL level on the global logger and exit with status 1."""
    _default._log(LogLevel.FATAL, msg, args, 2)
    raise SystemExit(1)


def with_fields(fields: Mapping[str, Any]) -> Logger:
    return _default.with_fields(fields)


def with_context(ctx: Any) -> Logger:
    return _default.with_context(ctx)