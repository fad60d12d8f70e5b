"""
监控与修复模块的 Pydantic 数据模型。

全部为值类型：创建后不再修改，彼此之间没有反向引用。
账本条目只以字符串记录目标，不持有对象引用。
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

UTC = timezone.utc


def utcnow() -> datetime:
    return datetime.now(UTC)


# === 枚举 ===

class AnomalyType(str, enum.Enum):
    MEMORY_SPIKE = "MEMORY_SPIKE"
    CPU_OVERLOAD = "CPU_OVERLOAD"
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class LogLevel(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"


class TargetState(str, enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    TERMINATING = "terminating"


class ActionKind(str, enum.Enum):
    """Runbook 步骤的动作类别（启发式推断）。"""
    RESTART = "restart"
    SCALE = "scale"
    ROLLBACK = "rollback"
    MONITOR = "monitor"
    UPDATE = "update"
    CHECK = "check"


class OutcomeState(str, enum.Enum):
    """工具调用的终态。DENIED 从未触碰后端；FAILED 可能已部分修改后端。"""
    DENIED = "DENIED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# === 监控侧 ===

class MetricsReading(BaseModel):
    """单个目标的一次归一化指标读数。"""
    model_config = ConfigDict(frozen=True)

    cpu_percent: float = Field(ge=0.0, le=100.0)
    memory_percent: float = Field(ge=0.0, le=100.0)
    memory_usage_bytes: int = Field(ge=0)
    memory_limit_bytes: int = Field(ge=0)
    network_bytes_per_sec: float = Field(default=0.0, ge=0.0)
    observed_at: datetime = Field(default_factory=utcnow)


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    level: LogLevel
    message: str
    source_id: str = ""
    source_name: str = ""


class Threshold(BaseModel):
    metric: str
    operator: str = ">"
    value: float
    duration_seconds: int


class AnomalyAlert(BaseModel):
    """检测器产出的告警，每次检测最多一条。"""
    type: AnomalyType
    severity: Severity
    target_id: str
    target_name: str
    metrics_snapshot: MetricsReading
    threshold: Threshold
    message: str
    observed_at: datetime = Field(default_factory=utcnow)
    context: Optional[dict[str, Any]] = None

    def summary(self) -> str:
        return f"[{self.severity.value}] {self.type.value} on {self.target_name}: {self.message}"


class DetectionReport(BaseModel):
    anomaly: Optional[AnomalyAlert] = None
    checks_performed: list[str] = Field(default_factory=list)
    observed_at: datetime = Field(default_factory=utcnow)


class RunbookStep(BaseModel):
    """Runbook 中的单个步骤。"""
    step_number: int
    description: str
    action_kind: ActionKind = ActionKind.CHECK
    params: dict[str, Any] = Field(default_factory=dict)
    required: bool = True


class Runbook(BaseModel):
    """完整的 Runbook 定义，构造后只读。"""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    trigger: AnomalyType
    steps: list[RunbookStep]
    rollback_plan: str = ""
    tags: list[str] = Field(default_factory=list)
    source: str = "builtin"


# === 安全校验 ===

class SafetyCheckResult(BaseModel):
    allowed: bool
    reason: str
    suggestions: list[str] = Field(default_factory=list)


class ActionHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    action_kind: str
    target: str
    occurred_at: float  # epoch 秒


# === 修复结果 ===

class RemediationOutcome(BaseModel):
    """所有修复工具共用的结果信封，message 可直接展示。"""
    success: bool
    state: OutcomeState
    error: Optional[str] = None
    message: str
    suggestions: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)

    def summary(self) -> str:
        return f"{self.state.value}: {self.message}"


class RestartOutcome(RemediationOutcome):
    container_id: str
    container_name: str = ""
    previous_state: str = ""
    new_state: str = ""


class ScaleOutcome(RemediationOutcome):
    service_name: str
    requested_replicas: int
    previous_replicas: int = 0
    new_replicas: int = 0
    failed_operations: int = 0
    partial: bool = False


class UpdateEnvOutcome(RemediationOutcome):
    container_id: str
    updated_vars: list[str] = Field(default_factory=list)
    changed_vars: list[str] = Field(default_factory=list)
    applied: bool = False
    restarted: bool = False


class RollbackOutcome(RemediationOutcome):
    service_name: str
    previous_image: str = ""
    current_image: str = ""
    revision: Optional[int] = None
