# Copyright (c)
# SPDX-License-Identifier: MIT
"""Date-and-size rotating file handler.

Summary:
    A ``logging.Handler`` writing to ``<directory>/<prefix>-<DATE>.log``. The
    active segment is closed and a new one opened when the date key changes or
    when the next record would push the segment past ``max_bytes``. Every
    closed segment gets an entry in the JSON audit ledger
    ``<prefix>-audit.json``; closed segments are optionally gzipped; a symlink
    ``<prefix>.log`` follows the active segment; segments beyond retention
    (count or age in days) are pruned.

Concurrency:
    ``logging.Handler.handle`` holds the handler lock around ``emit``, so a
    rotation and the writes racing it are serialized: a record arriving during
    rotation waits and lands in the new segment.

Notes:
    Date keys are computed in UTC. Same-date segments are numbered
    ``<prefix>-<DATE>.<n>.log`` with ``n`` starting at 1.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import re
import shutil
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import IO, Any

__all__ = ["DailyRotatingFileHandler", "compress_file", "iso_utc"]

_DATE_FORMATS: dict[str, str] = {
    "YYYY-MM-DD": "%Y-%m-%d",
    "YYYY-MM-DD-HH": "%Y-%m-%d-%H",
}


def iso_utc(moment: datetime) -> str:
    """Render ``moment`` as ISO-8601 UTC with millisecond precision and ``Z``."""
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def compress_file(filepath: Path) -> Path:
    """Gzip-compress a file in place and return the ``.gz`` path."""
    gz_path = filepath.with_name(filepath.name + ".gz")
    with filepath.open("rb") as f_in, gzip.open(gz_path, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    filepath.unlink()
    return gz_path


class DailyRotatingFileHandler(logging.Handler):
    """Rotate on date boundary or size cap, with audit ledger and retention.

    Args:
        directory: Directory holding segments, ledger and symlink (created if missing).
        prefix: Segment name prefix, e.g. ``app`` or ``error``.
        max_bytes: Size cap of one segment in bytes.
        date_pattern: ``YYYY-MM-DD`` (daily) or ``YYYY-MM-DD-HH`` (hourly).
        max_files: Keep at most this many segments (including the active one).
        max_age_days: Delete segments whose date is older than this many days.
        compress: Gzip closed segments.
        symlink: Maintain ``<prefix>.log`` pointing at the active segment.
        level: Minimum level accepted by this handler.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        directory: str | os.PathLike[str],
        prefix: str,
        *,
        max_bytes: int,
        date_pattern: str = "YYYY-MM-DD",
        max_files: int | None = None,
        max_age_days: int | None = None,
        compress: bool = True,
        symlink: bool = True,
        level: int = logging.NOTSET,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(level)
        if date_pattern not in _DATE_FORMATS:
            raise ValueError(f"unsupported date pattern: {date_pattern!r}")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.directory = Path(directory)
        self.prefix = prefix
        self.max_bytes = max_bytes
        self.date_format = _DATE_FORMATS[date_pattern]
        self.max_files = max_files
        self.max_age_days = max_age_days
        self.compress = compress
        self.symlink = symlink
        self._clock = clock or (lambda: datetime.now(UTC))
        self._segment_re = re.compile(
            rf"^{re.escape(prefix)}-(?P<date>[0-9-]+?)(?:\.(?P<index>\d+))?\.log(?:\.gz)?$"
        )

        self._stream: IO[bytes] | None = None
        self._path: Path | None = None
        self._date_key: str | None = None
        self._index = 0
        self._bytes = 0
        self._records = 0
        self._started_at: datetime | None = None

        self.directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------ #
    # Paths
    # ------------------------------------------------------------------ #
    @property
    def audit_path(self) -> Path:
        """Path of the JSON audit ledger."""
        return self.directory / f"{self.prefix}-audit.json"

    @property
    def symlink_path(self) -> Path:
        """Path of the symlink that follows the active segment."""
        return self.directory / f"{self.prefix}.log"

    @property
    def current_path(self) -> Path | None:
        """Path of the active segment, if one is open."""
        return self._path

    def segment_path(self, date_key: str, index: int = 0) -> Path:
        """Return the segment path for ``date_key`` and same-date ``index``."""
        suffix = f".{index}" if index else ""
        return self.directory / f"{self.prefix}-{date_key}{suffix}.log"

    # ------------------------------------------------------------------ #
    # logging.Handler API
    # ------------------------------------------------------------------ #
    def emit(self, record: logging.LogRecord) -> None:
        """Write one formatted record, rotating first when required."""
        try:
            data = (self.format(record) + "\n").encode("utf-8")
            self._prepare(len(data), self._clock())
            assert self._stream is not None
            self._stream.write(data)
            self._stream.flush()
            self._bytes += len(data)
            self._records += 1
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        with self.lock:
            if self._stream is not None:
                self._stream.flush()

    def close(self) -> None:
        """Close the active segment without rotating it."""
        with self.lock:
            try:
                if self._stream is not None:
                    self._stream.close()
            finally:
                self._stream = None
                super().close()

    def do_rollover(self) -> None:
        """Force a rotation of the active segment (same date key)."""
        with self.lock:
            if self._stream is None:
                return
            assert self._date_key is not None
            self._rotate(self._date_key, self._clock())

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #
    def _prepare(self, incoming: int, now: datetime) -> None:
        date_key = now.astimezone(UTC).strftime(self.date_format)
        if self._stream is None:
            self._open(date_key, self._first_free_index(date_key, incoming), now)
        elif date_key != self._date_key:
            self._rotate(date_key, now)
        elif self._bytes > 0 and self._bytes + incoming > self.max_bytes:
            self._rotate(date_key, now)

    def _segment_taken(self, date_key: str, index: int) -> bool:
        path = self.segment_path(date_key, index)
        return path.exists() or path.with_name(path.name + ".gz").exists()

    def _first_free_index(self, date_key: str, incoming: int) -> int:
        # Resume an existing uncompressed segment while it still has room.
        index = 0
        while True:
            path = self.segment_path(date_key, index)
            if path.with_name(path.name + ".gz").exists():
                index += 1
            elif path.exists() and path.stat().st_size + incoming > self.max_bytes:
                index += 1
            else:
                return index

    def _open(self, date_key: str, index: int, now: datetime) -> None:
        path = self.segment_path(date_key, index)
        self._stream = path.open("ab")
        self._path = path
        self._date_key = date_key
        self._index = index
        self._bytes = path.stat().st_size
        self._records = 0
        self._started_at = now
        if self.symlink:
            self._update_symlink(path)

    def _rotate(self, date_key: str, now: datetime) -> None:
        assert self._stream is not None and self._path is not None
        self._stream.close()
        self._stream = None
        closed = self._path
        entry: dict[str, Any] = {
            "file": str(closed),
            "startTime": iso_utc(self._started_at or now),
            "endTime": iso_utc(now),
            "bytes": self._bytes,
            "records": self._records,
            "compressed": False,
        }
        if self.compress and closed.exists():
            compress_file(closed)
            entry["compressed"] = True
        self._append_audit(entry)

        next_index = self._index + 1 if date_key == self._date_key else 0
        while self._segment_taken(date_key, next_index):
            next_index += 1
        self._open(date_key, next_index, now)
        self._prune(now)

    def _append_audit(self, entry: dict[str, Any]) -> None:
        entries: list[dict[str, Any]] = []
        if self.audit_path.exists():
            try:
                loaded = json.loads(self.audit_path.read_text(encoding="utf-8") or "[]")
            except json.JSONDecodeError:
                loaded = []
            if isinstance(loaded, list):
                entries = loaded
        entries.append(entry)
        tmp = self.audit_path.with_name(self.audit_path.name + ".tmp")
        tmp.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        os.replace(tmp, self.audit_path)

    def _update_symlink(self, target: Path) -> None:
        link = self.symlink_path
        tmp = link.with_name(link.name + ".tmp")
        if tmp.is_symlink() or tmp.exists():
            tmp.unlink()
        os.symlink(target.name, tmp)
        os.replace(tmp, link)

    # ------------------------------------------------------------------ #
    # Retention
    # ------------------------------------------------------------------ #
    def segments(self) -> list[Path]:
        """Return every segment of this prefix (compressed or not), oldest first."""
        found: list[tuple[str, int, Path]] = []
        for path in self.directory.iterdir():
            if path.is_symlink():
                continue
            match = self._segment_re.match(path.name)
            if match is None:
                continue
            found.append((match.group("date"), int(match.group("index") or 0), path))
        found.sort(key=lambda item: (item[0], item[1]))
        return [path for _, _, path in found]

    def _prune(self, now: datetime) -> list[Path]:
        deleted: list[Path] = []
        survivors: list[Path] = []
        cutoff: str | None = None
        if self.max_age_days is not None:
            cutoff = (now - timedelta(days=self.max_age_days)).astimezone(UTC).strftime(
                self.date_format
            )

        for path in self.segments():
            if path == self._path:
                survivors.append(path)
                continue
            match = self._segment_re.match(path.name)
            if cutoff is not None and match is not None and match.group("date") < cutoff:
                path.unlink()
                deleted.append(path)
            else:
                survivors.append(path)

        if self.max_files is not None:
            removable = [p for p in survivors if p != self._path]
            while len(removable) + 1 > self.max_files and removable:
                victim = removable.pop(0)
                victim.unlink()
                deleted.append(victim)
        return deleted
