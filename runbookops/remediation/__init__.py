"""
修复模块 (Remediation)

安全校验 + 四个修复工具（重启、扩缩容、环境变量更新、回滚）。
每个工具在任何写操作之前先通过 SafetyValidator；结果统一为 RemediationOutcome。
"""
from .executor import RemediationExecutor
from .safety import ActionLedger, SafetyLimits, SafetyValidator

__all__ = ["ActionLedger", "RemediationExecutor", "SafetyLimits", "SafetyValidator"]
