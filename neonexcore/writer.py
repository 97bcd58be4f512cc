"""File writer with size- and date-based rotation, and a fan-out writer."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any


@dataclass
class FileWriterConfig:
    """Settings for a rotating file writer; sizes in MB, ages in days."""

    filename: str
    max_size: int = 0
    max_backups: int = 0
    max_age: int = 0
    rotate_on_date: bool = False


class FileWriter:
    """Appends to a file, rotating it when it grows too large or the day changes."""

    def __init__(self, config: FileWriterConfig) -> None:
        max_size = config.max_size or 100
        self._filename = os.fspath(config.filename)
        self._max_size = max_size * 1024 * 1024
        self._max_backups = config.max_backups
        self._max_age = config.max_age
        self._rotate_on_date = config.rotate_on_date
        self._current_date = date.today().isoformat()
        self._lock = threading.Lock()
        self._file: Any = None
        self._size = 0
        self._cleaners: list[threading.Thread] = []
        self._open()

    def write(self, data: bytes) -> int:
        """Write bytes, rotating first if needed; returns the count written."""
        with self._lock:
            if self._should_rotate():
                self._rotate()
            written = self._file.write(data)
            self._size += written
            return written

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
            cleaners, self._cleaners = self._cleaners, []
        for cleaner in cleaners:
            cleaner.join()

    def __enter__(self) -> FileWriter:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _open(self) -> None:
        directory = os.path.dirname(self._filename) or "."
        os.makedirs(directory, mode=0o755, exist_ok=True)
        self._file = open(self._filename, "ab", buffering=0)
        self._size = os.fstat(self._file.fileno()).st_size

    def _should_rotate(self) -> bool:
        if self._size >= self._max_size:
            return True
        if self._rotate_on_date:
            today = date.today().isoformat()
            if today != self._current_date:
                self._current_date = today
                return True
        return False

    def _rotate(self) -> None:
        if self._file is not None:
            self._file.close()
        backup = f"{self._filename}.{datetime.now():%Y%m%d-%H%M%S}"
        try:
            os.replace(self._filename, backup)
        except FileNotFoundError:
            pass
        self._open()
        cleaner = threading.Thread(target=self._clean_old_backups, daemon=True)
        cleaner.start()
        self._cleaners.append(cleaner)

    def _clean_old_backups(self) -> None:
        directory = os.path.dirname(self._filename) or "."
        base = os.path.basename(self._filename)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            return

        backups = [
            e
            for e in entries
            if not e.is_dir(follow_symlinks=False)
            and len(e.name) > len(base)
            and e.name.startswith(base)
        ]

        if self._max_backups > 0 and len(backups) > self._max_backups:
            for old in backups[: len(backups) - self._max_backups]:
                _remove(os.path.join(directory, old.name))

        if self._max_age > 0:
            cutoff = (datetime.now() - timedelta(days=self._max_age)).timestamp()
            for backup in backups:
                try:
                    mtime = backup.stat(follow_symlinks=False).st_mtime
                except OSError:
                    continue
                if mtime < cutoff:
                    _remove(os.path.join(directory, backup.name))


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


class MultiWriter:
    """Writes the same bytes to every writer it holds."""

    def __init__(self, *writers: Any) -> None:
        self._writers = list(writers)

    def write(self, data: bytes) -> int:
        for writer in self._writers:
            writer.write(data)
        return len(data)

    def add(self, writer: Any) -> None:
        self._writers.append(writer)