"""
安全模块：动作禁令、限流、重启次数上限、最小间隔。

最后一道防线。每个修复动作在触碰后端之前都必须通过这里。
禁令关键词与环境变量白名单硬编码，不允许通过配置文件或环境变量覆盖。
只有放行的动作才写入账本，被拒绝的尝试不消耗限额。
账本只保存在进程内存中，进程重启后限额随之清零。
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from runbookops.core.config import Settings
from runbookops.models import ActionHistoryEntry, SafetyCheckResult

logger = logging.getLogger(__name__)

# === 禁止动作（始终需要人工审批） ===
BLOCKED_ACTIONS: tuple[str, ...] = ("delete", "remove", "prune", "kill")

# === 可修改的环境变量白名单 ===
ENV_VAR_WHITELIST: frozenset[str] = frozenset({
    "LOG_LEVEL",
    "DEBUG",
    "NODE_ENV",
    "JAVA_OPTS",
    "MAX_MEMORY",
    "MAX_HEAP_SIZE",
    "TIMEOUT",
    "RETRY_COUNT",
    "POOL_SIZE",
})

HOUR_SECONDS = 60 * 60
RETENTION_SECONDS = 24 * HOUR_SECONDS


def is_blocked_action(action_kind: str) -> bool:
    lowered = action_kind.lower()
    return any(blocked in lowered for blocked in BLOCKED_ACTIONS)


def non_whitelisted(names) -> list[str]:
    return sorted(n for n in names if n not in ENV_VAR_WHITELIST)


@dataclass(frozen=True)
class SafetyLimits:
    max_actions_per_hour: int = 10
    max_restarts_per_target_per_hour: int = 3
    min_action_spacing_ms: int = 5000

    @classmethod
    def from_settings(cls, settings: Settings) -> "SafetyLimits":
        return cls(
            max_actions_per_hour=settings.max_actions_per_hour,
            max_restarts_per_target_per_hour=settings.max_restarts_per_target_per_hour,
            min_action_spacing_ms=settings.min_action_spacing_ms,
        )


class ActionLedger:
    """已放行动作的按时间排序的内存账本。"""

    def __init__(self) -> None:
        self._entries: deque[ActionHistoryEntry] = deque()
        self.lock = threading.Lock()

    def recent(self, now: float, window_seconds: float = HOUR_SECONDS) -> list[ActionHistoryEntry]:
        return [e for e in self._entries if now - e.occurred_at < window_seconds]

    def append(self, entry: ActionHistoryEntry) -> None:
        self._entries.append(entry)

    def prune(self, now: float, retention_seconds: float = RETENTION_SECONDS) -> None:
        while self._entries and now - self._entries[0].occurred_at > retention_seconds:
            self._entries.popleft()

    def history(self) -> list[ActionHistoryEntry]:
        with self.lock:
            return list(self._entries)

    def clear(self) -> None:
        with self.lock:
            self._entries.clear()
        logger.info("Action history cleared")

    def __len__(self) -> int:
        return len(self._entries)


class SafetyValidator:
    """按顺序执行安全检查，第一个失败的检查决定拒绝原因。

    检查与账本写入在同一把锁内完成，并发调用不会越过彼此的写入。
    """

    def __init__(
        self,
        limits: Optional[SafetyLimits] = None,
        ledger: Optional[ActionLedger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limits = limits or SafetyLimits()
        self.ledger = ledger or ActionLedger()
        self.clock = clock

    def validate(self, action_kind: str, params: Optional[dict[str, Any]] = None) -> SafetyCheckResult:
        params = params or {}
        logger.info("Validating action %s (target=%s)", action_kind, _target_of(params))

        if is_blocked_action(action_kind):
            return self._deny(
                action_kind,
                f"Action '{action_kind}' is blocked and requires human approval",
                ["Request manual intervention", "Use safer alternative action"],
            )

        with self.ledger.lock:
            now = self.clock()
            recent = self.ledger.recent(now)
            limits = self.limits

            if len(recent) >= limits.max_actions_per_hour:
                return self._deny(
                    action_kind,
                    f"Rate limit exceeded: {limits.max_actions_per_hour} actions per hour",
                    ["Wait before performing more actions", "Contact on-call engineer"],
                )

            if action_kind == "restart":
                container_id = params.get("containerId")
                restarts = [e for e in recent if e.action_kind == "restart" and e.target == container_id]
                if len(restarts) >= limits.max_restarts_per_target_per_hour:
                    return self._deny(
                        action_kind,
                        f"Too many restarts for container {container_id} in the last hour "
                        f"({len(restarts)}/{limits.max_restarts_per_target_per_hour})",
                        [
                            "Investigate root cause instead of repeatedly restarting",
                            "Check logs for persistent issues",
                        ],
                    )

            if recent:
                elapsed_ms = (now - recent[-1].occurred_at) * 1000
                if elapsed_ms < limits.min_action_spacing_ms:
                    return self._deny(
                        action_kind,
                        f"Actions must be spaced at least {limits.min_action_spacing_ms / 1000:g} seconds apart",
                        ["Wait a few seconds before next action"],
                    )

            self.ledger.append(ActionHistoryEntry(
                action_kind=action_kind, target=_target_of(params), occurred_at=now,
            ))
            self.ledger.prune(now)

        logger.info("Action %s passed all safety checks", action_kind)
        return SafetyCheckResult(allowed=True, reason="Action passed all safety checks")

    @staticmethod
    def _deny(action_kind: str, reason: str, suggestions: list[str]) -> SafetyCheckResult:
        logger.warning("Action %s denied: %s", action_kind, reason)
        return SafetyCheckResult(allowed=False, reason=reason, suggestions=suggestions)


def _target_of(params: dict[str, Any]) -> str:
    return params.get("containerId") or params.get("serviceName") or "unknown"
