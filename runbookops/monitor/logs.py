"""
日志分级模块。

把后端返回的原始日志行解析为带级别与时间戳的 LogEntry：
- 行首 RFC 3339 时间戳（Z 或数字时区，小数秒任意精度，截断到微秒）；
- 级别按 ERROR > WARN > DEBUG > FATAL > INFO 的顺序做不区分大小写的子串匹配；
- 多个副本的日志先合并、按时间倒序排序，再截断到请求的行数。
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional

from runbookops.backends.base import OrchestrationBackend
from runbookops.core.exceptions import InvalidParameterError
from runbookops.models import LogEntry, LogLevel, utcnow
from runbookops.remediation.targets import select_targets

logger = logging.getLogger(__name__)

TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(\.\d+)?(Z|[+-]\d{2}:?\d{2})"
)

# 匹配顺序即优先级
LEVEL_PRECEDENCE = [LogLevel.ERROR, LogLevel.WARN, LogLevel.DEBUG, LogLevel.FATAL, LogLevel.INFO]

ALL_LEVELS = "ALL"


def detect_level(line: str) -> LogLevel:
    upper = line.upper()
    for level in LEVEL_PRECEDENCE:
        if level.value in upper:
            return level
    return LogLevel.INFO


def parse_timestamp(line: str) -> tuple[Optional[datetime], int]:
    """解析行首时间戳，返回 (时间, 时间戳占用的字符数)。"""
    match = TIMESTAMP_RE.match(line)
    if not match:
        return None, 0

    base, fraction, offset = match.groups()
    # 小数秒截断或补齐到 6 位
    fraction = f".{fraction[1:7].ljust(6, '0')}" if fraction else ""
    if offset == "Z":
        offset = "+00:00"
    elif ":" not in offset:
        offset = f"{offset[:3]}:{offset[3:]}"
    try:
        parsed = datetime.fromisoformat(f"{base}{fraction}{offset}")
    except ValueError:
        return None, 0
    return parsed, match.end()


def parse_log_line(line: str, source_id: str = "", source_name: str = "") -> LogEntry:
    timestamp, consumed = parse_timestamp(line)
    message = line[consumed:].strip() if consumed else line
    return LogEntry(
        timestamp=timestamp or utcnow(),
        level=detect_level(line),
        message=message,
        source_id=source_id,
        source_name=source_name,
    )


def normalize_level_filter(level: str) -> Optional[LogLevel]:
    """ALL 返回 None；其他值必须是合法的日志级别。"""
    normalized = (level or ALL_LEVELS).strip().upper()
    if normalized == ALL_LEVELS:
        return None
    try:
        return LogLevel(normalized)
    except ValueError as e:
        raise InvalidParameterError(
            f"Invalid log level filter: {level}",
            detail=f"Expected one of ALL, {', '.join(l.value for l in LogLevel)}",
        ) from e


def merge_entries(sources: list[list[LogEntry]], limit: int) -> list[LogEntry]:
    """先合并全部来源、按时间倒序排序，再截断。"""
    merged = [entry for entries in sources for entry in entries]
    merged.sort(key=lambda e: e.timestamp, reverse=True)
    return merged[:limit]


class LogReader:
    """按目标读取、分级并过滤日志。"""

    def __init__(self, backend: OrchestrationBackend) -> None:
        self.backend = backend

    async def get_logs(self, target_id: str, lines: int = 100, level: str = ALL_LEVELS) -> list[LogEntry]:
        if lines <= 0:
            raise InvalidParameterError(f"Line count must be positive, got {lines}")
        level_filter = normalize_level_filter(level)

        targets = select_targets(
            await self.backend.list_targets(), target_id, self.backend.service_name
        )

        sources: list[list[LogEntry]] = []
        for target in targets:
            raw = await self.backend.read_logs(target.id, lines)
            entries = []
            for line in raw.splitlines():
                clean = line.strip()
                if not clean:
                    continue
                entry = parse_log_line(clean, source_id=target.id, source_name=target.name)
                if level_filter is not None and entry.level != level_filter:
                    continue
                entries.append(entry)
            sources.append(entries)

        result = merge_entries(sources, lines)
        logger.info("Fetched %d log entries for %s from %d target(s)",
                    len(result), target_id, len(targets))
        return result
