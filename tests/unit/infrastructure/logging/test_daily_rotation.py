from __future__ import annotations

import gzip
import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from hello_api.infrastructure.logging.rotating import DailyRotatingFileHandler, compress_file, iso_utc


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def _emit(handler: logging.Handler, message: str) -> None:
    handler.handle(logging.makeLogRecord({"msg": message, "levelno": logging.INFO, "levelname": "INFO"}))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


def test_iso_utc_has_millis_and_z() -> None:
    moment = datetime(2026, 3, 4, 5, 6, 7, 891_234, tzinfo=UTC)
    assert iso_utc(moment) == "2026-03-04T05:06:07.891Z"


def test_compress_file_replaces_original(tmp_path: Path) -> None:
    src = tmp_path / "segment.log"
    src.write_text("line\n")
    gz = compress_file(src)

    assert gz.name == "segment.log.gz"
    assert not src.exists()
    with gzip.open(gz, "rt") as fh:
        assert fh.read() == "line\n"


def test_rejects_unknown_date_pattern(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        DailyRotatingFileHandler(tmp_path, "app", max_bytes=10, date_pattern="DD/MM")


def test_first_record_opens_dated_segment_and_symlink(tmp_path: Path, clock: FakeClock) -> None:
    handler = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, clock=clock)
    _emit(handler, "hello")
    handler.close()

    segment = tmp_path / "app-2026-01-01.log"
    assert segment.read_text() == "hello\n"
    assert handler.symlink_path.is_symlink()
    assert handler.symlink_path.resolve() == segment.resolve()


def test_size_cap_rotates_compresses_and_audits(tmp_path: Path, clock: FakeClock) -> None:
    handler = DailyRotatingFileHandler(tmp_path, "app", max_bytes=20, clock=clock)
    _emit(handler, "a" * 10)
    clock.advance(seconds=1)
    _emit(handler, "b" * 10)
    handler.close()

    assert (tmp_path / "app-2026-01-01.log.gz").exists()
    assert (tmp_path / "app-2026-01-01.1.log").read_text() == "b" * 10 + "\n"
    assert handler.symlink_path.resolve().name == "app-2026-01-01.1.log"

    (entry,) = json.loads(handler.audit_path.read_text())
    assert entry == {
        "file": str(tmp_path / "app-2026-01-01.log"),
        "startTime": "2026-01-01T12:00:00.000Z",
        "endTime": "2026-01-01T12:00:01.000Z",
        "bytes": 11,
        "records": 1,
        "compressed": True,
    }


def test_date_change_starts_new_segment(tmp_path: Path, clock: FakeClock) -> None:
    handler = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, compress=False, clock=clock)
    _emit(handler, "day one")
    clock.advance(days=1)
    _emit(handler, "day two")
    handler.close()

    assert (tmp_path / "app-2026-01-01.log").read_text() == "day one\n"
    assert (tmp_path / "app-2026-01-02.log").read_text() == "day two\n"
    assert json.loads(handler.audit_path.read_text())[0]["compressed"] is False


def test_retention_by_count_keeps_newest(tmp_path: Path, clock: FakeClock) -> None:
    handler = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, max_files=2, clock=clock)
    for n in range(4):
        _emit(handler, f"record {n}")
        handler.do_rollover()
    handler.close()

    names = [p.name for p in handler.segments()]
    assert len(names) == 2
    assert names[-1] == handler.current_path.name  # type: ignore[union-attr]


def test_retention_by_age_drops_old_dates(tmp_path: Path, clock: FakeClock) -> None:
    handler = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, max_age_days=2, clock=clock)
    _emit(handler, "old")
    clock.advance(days=5)
    _emit(handler, "new")
    handler.close()

    assert [p.name for p in handler.segments()] == ["app-2026-01-06.log"]


def test_resumes_existing_segment_after_restart(tmp_path: Path, clock: FakeClock) -> None:
    first = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, clock=clock)
    _emit(first, "before")
    first.close()

    second = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, clock=clock)
    _emit(second, "after")
    second.close()

    assert (tmp_path / "app-2026-01-01.log").read_text() == "before\nafter\n"


def test_segments_ignore_other_prefixes(tmp_path: Path, clock: FakeClock) -> None:
    app = DailyRotatingFileHandler(tmp_path, "app", max_bytes=1024, clock=clock)
    err = DailyRotatingFileHandler(tmp_path, "error", max_bytes=1024, clock=clock)
    _emit(app, "a")
    _emit(err, "e")
    app.close()
    err.close()

    assert [p.name for p in app.segments()] == ["app-2026-01-01.log"]
    assert [p.name for p in err.segments()] == ["error-2026-01-01.log"]
