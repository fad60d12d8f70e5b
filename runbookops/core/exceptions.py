"""
异常体系模块 (Exception Taxonomy Module)

定义监控与修复流程中的业务异常类。监控操作直接抛出这些异常；
修复工具在工具边界捕获它们并转换为结构化结果，绝不让异常冒泡到调用方。

Defines the business exceptions used by monitoring and remediation. Monitor
operations raise them directly; remediation tools catch them at the tool
boundary and convert them into structured outcomes.
"""
from typing import Optional


# ============================================================
# 非异常结果的错误码 (Error Codes for Non-Exception Outcomes)
# ============================================================

VALIDATION_DENIED = "validation_denied"
PARTIAL_FAILURE = "partial_failure"
NO_ROLLBACK_TARGET = "no_rollback_target"


# ============================================================
# 业务异常类 (Business Exception Classes)
# ============================================================

class RemediationError(Exception):
    """异常基类 (Base Exception)"""
    error: str = "remediation_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class TargetNotFoundError(RemediationError):
    """找不到匹配的目标 (No Matching Target)"""
    error = "target_not_found"


class BackendError(RemediationError):
    """编排后端调用失败 (Backend Call Failed)"""
    error = "backend_error"


class BackendUnavailableError(BackendError):
    """编排后端不可达 (Backend Unreachable)"""
    error = "backend_unavailable"


class ConvergenceTimeoutError(RemediationError):
    """轮询超过截止时间 (Poll Loop Exceeded Its Deadline)"""
    error = "convergence_timeout"


class InvalidParameterError(RemediationError):
    """调用参数静态校验失败 (Caller Input Failed Static Validation)"""
    error = "invalid_parameter"


class MetricsUnavailableError(RemediationError):
    """无法产出指标读数 (No Metrics Reading Could Be Produced)"""
    error = "metrics_unavailable"


class UnknownAnomalyTypeError(RemediationError):
    """未知的异常类型 (Unknown Anomaly Type)"""
    error = "unknown_anomaly_type"
