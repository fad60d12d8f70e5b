"""
Runbook 注册表：把异常类型映射到修复计划。

三个内置 runbook 在构造时注册。配置了 runbook 目录时，同名 Markdown 文档覆盖内置定义。
步骤动作类别用关键词表做启发式推断，不是严格的解析器。
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Union

from runbookops.core.exceptions import UnknownAnomalyTypeError
from runbookops.models import ActionKind, AnomalyType, Runbook, RunbookStep

from .runbooks.cpu_overload import RUNBOOK as CPU_OVERLOAD
from .runbooks.high_error_rate import RUNBOOK as HIGH_ERROR_RATE
from .runbooks.memory_spike import RUNBOOK as MEMORY_SPIKE

logger = logging.getLogger(__name__)

RUNBOOK_FILES = {
    AnomalyType.MEMORY_SPIKE: "memory-spike.md",
    AnomalyType.HIGH_ERROR_RATE: "high-error-rate.md",
    AnomalyType.CPU_OVERLOAD: "cpu-overload.md",
}

# 按顺序匹配，先命中者生效
ACTION_KEYWORDS: list[tuple[tuple[str, ...], ActionKind]] = [
    (("restart",), ActionKind.RESTART),
    (("scale",), ActionKind.SCALE),
    (("rollback",), ActionKind.ROLLBACK),
    (("monitor",), ActionKind.MONITOR),
    (("update", "increase"), ActionKind.UPDATE),
]

_STEP_RE = re.compile(r"^\d+\.")


def infer_action_kind(text: str) -> ActionKind:
    lowered = text.lower()
    for keywords, kind in ACTION_KEYWORDS:
        if any(k in lowered for k in keywords):
            return kind
    return ActionKind.CHECK


def parse_runbook_markdown(markdown: str, anomaly_type: AnomalyType, source: str = "") -> Runbook:
    """解析 `# 标题` / `## Detection` / `## Steps` / `## Rollback Plan` 结构的文档。"""
    name = ""
    description: list[str] = []
    steps: list[RunbookStep] = []
    rollback: list[str] = []
    section = ""

    for line in markdown.splitlines():
        trimmed = line.strip()

        if trimmed.startswith("# ") and not name:
            name = trimmed[2:].strip()
            continue
        if trimmed.startswith("## Detection"):
            section = "detection"
            continue
        if trimmed.startswith("## Steps"):
            section = "steps"
            continue
        if trimmed.startswith("## Rollback Plan"):
            section = "rollback"
            continue
        if trimmed.startswith("##"):
            section = ""
            continue

        if section == "detection" and trimmed:
            description.append(trimmed)
        elif section == "steps" and _STEP_RE.match(trimmed):
            text = trimmed[trimmed.index(".") + 1:].strip()
            steps.append(RunbookStep(
                step_number=len(steps) + 1,
                description=text,
                action_kind=infer_action_kind(text),
            ))
        elif section == "rollback" and trimmed:
            rollback.append(trimmed)

    return Runbook(
        name=name or f"{anomaly_type.value} Runbook",
        description=" ".join(description),
        trigger=anomaly_type,
        steps=steps,
        rollback_plan="\n".join(rollback),
        tags=[anomaly_type.value.lower()],
        source=source or "markdown",
    )


class RunbookRegistry:
    """异常类型 → Runbook。"""

    def __init__(self, runbook_dir: Optional[Union[str, Path]] = None) -> None:
        self.runbook_dir = Path(runbook_dir) if runbook_dir else None
        self._runbooks: dict[AnomalyType, Runbook] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        for runbook in [MEMORY_SPIKE, CPU_OVERLOAD, HIGH_ERROR_RATE]:
            self.register(runbook)

    def register(self, runbook: Runbook) -> None:
        self._runbooks[runbook.trigger] = runbook
        logger.debug("Registered runbook: %s", runbook.name)

    def list_all(self) -> list[Runbook]:
        return [self.select(t) for t in AnomalyType]

    def select(self, anomaly_type: Union[AnomalyType, str]) -> Runbook:
        """
        Raises:
            UnknownAnomalyTypeError: 不是三种已定义的异常类型之一
        """
        try:
            key = AnomalyType(anomaly_type)
        except ValueError as e:
            valid = ", ".join(t.value for t in AnomalyType)
            raise UnknownAnomalyTypeError(
                f"Unknown anomaly type: {anomaly_type}. Valid types: {valid}"
            ) from e

        runbook = self._load_document(key) or self._runbooks[key]
        logger.info("Selected runbook '%s' for %s (%d steps)", runbook.name, key.value, len(runbook.steps))
        return runbook

    def _load_document(self, anomaly_type: AnomalyType) -> Optional[Runbook]:
        if self.runbook_dir is None:
            return None
        path = self.runbook_dir / RUNBOOK_FILES[anomaly_type]
        if not path.is_file():
            return None
        logger.debug("Reading runbook file %s", path)
        return parse_runbook_markdown(path.read_text(encoding="utf-8"), anomaly_type, source=str(path))
