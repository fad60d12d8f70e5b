"""日志分级与合并测试。"""
from datetime import datetime, timedelta, timezone

import pytest

from runbookops.core.exceptions import InvalidParameterError, TargetNotFoundError
from runbookops.models import LogEntry, LogLevel
from runbookops.monitor.logs import (
    LogReader,
    detect_level,
    merge_entries,
    normalize_level_filter,
    parse_log_line,
    parse_timestamp,
)


class TestLevelDetection:
    @pytest.mark.parametrize("line,expected", [
        ("GET /health 200", LogLevel.INFO),
        ("error: connection refused", LogLevel.ERROR),
        ("WARN pool nearly exhausted", LogLevel.WARN),
        ("[debug] cache miss", LogLevel.DEBUG),
        ("FATAL out of memory", LogLevel.FATAL),
        ("WARNING: deprecated flag", LogLevel.WARN),
    ])
    def test_single_level(self, line, expected):
        assert detect_level(line) == expected

    def test_error_wins_over_warn(self):
        assert detect_level("WARN retry failed with ERROR 500") == LogLevel.ERROR

    def test_debug_wins_over_fatal(self):
        assert detect_level("DEBUG: simulated FATAL path") == LogLevel.DEBUG


class TestTimestamp:
    def test_nanosecond_precision_truncated(self):
        ts, consumed = parse_timestamp("2024-01-01T10:00:00.123456789Z hello")
        assert ts == datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert consumed == len("2024-01-01T10:00:00.123456789Z")

    def test_short_fraction_padded(self):
        ts, _ = parse_timestamp("2024-01-01T10:00:00.5Z x")
        assert ts.microsecond == 500000

    def test_numeric_offset(self):
        ts, _ = parse_timestamp("2024-01-01T10:00:00+0800 x")
        assert ts.utcoffset() == timedelta(hours=8)

    def test_no_timestamp(self):
        assert parse_timestamp("plain line") == (None, 0)

    def test_parse_log_line_strips_timestamp(self):
        entry = parse_log_line("2024-01-01T10:00:00Z ERROR boom", source_id="c1", source_name="demo-app")
        assert entry.message == "ERROR boom"
        assert entry.level == LogLevel.ERROR
        assert entry.source_id == "c1"

    def test_parse_log_line_without_timestamp_keeps_message(self):
        entry = parse_log_line("just text")
        assert entry.message == "just text"
        assert entry.timestamp.tzinfo is not None


def test_level_filter():
    assert normalize_level_filter("ALL") is None
    assert normalize_level_filter("all") is None
    assert normalize_level_filter("error") == LogLevel.ERROR
    with pytest.raises(InvalidParameterError):
        normalize_level_filter("VERBOSE")


def test_merge_sorts_before_truncating():
    """多个来源先合并排序再截断，而不是各自截断。"""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def entry(minute):
        return LogEntry(timestamp=base + timedelta(minutes=minute), level=LogLevel.INFO, message=f"t{minute}")

    a = [entry(1), entry(3), entry(5)]
    b = [entry(2), entry(4)]
    merged = merge_entries([a, b], 3)
    assert [e.message for e in merged] == ["t5", "t4", "t3"]


def _lines(*pairs):
    return "\n".join(f"2024-01-01T10:00:0{sec}Z {text}" for sec, text in pairs)


@pytest.mark.asyncio
async def test_get_logs_merges_replicas(fake_backend):
    fake_backend.logs = {
        "demo-app-7d9f-abc12": _lines((1, "INFO a1"), (3, "ERROR a3"), (5, "INFO a5")),
        "demo-app-7d9f-def34": _lines((2, "INFO b2"), (4, "WARN b4")),
    }
    reader = LogReader(fake_backend)

    logs = await reader.get_logs("demo-app", lines=3)

    assert [e.message for e in logs] == ["INFO a5", "WARN b4", "ERROR a3"]
    assert logs[1].source_id == "demo-app-7d9f-def34"


@pytest.mark.asyncio
async def test_get_logs_level_filter(fake_backend):
    fake_backend.logs = {
        "demo-app-7d9f-abc12": _lines((1, "INFO ok"), (2, "ERROR bad"), (3, ""), (4, "ERROR worse")),
    }
    reader = LogReader(fake_backend)

    logs = await reader.get_logs("demo-app-7d9f-abc12", lines=10, level="ERROR")

    assert [e.message for e in logs] == ["ERROR worse", "ERROR bad"]


@pytest.mark.asyncio
async def test_get_logs_invalid_arguments(fake_backend):
    reader = LogReader(fake_backend)
    with pytest.raises(InvalidParameterError):
        await reader.get_logs("demo-app", lines=0)
    with pytest.raises(InvalidParameterError):
        await reader.get_logs("demo-app", level="TRACE")
    with pytest.raises(TargetNotFoundError):
        await reader.get_logs("unknown-pod")
