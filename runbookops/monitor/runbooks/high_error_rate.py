"""
RunbookOps 内置 Runbook - 错误率过高
RunbookOps Built-in Runbook - High Error Rate

适用场景 (Applicable Scenarios):
- 最近 100 行日志中 ERROR 占比超过 5% (More than 5% ERROR lines in the last 100)
- 常见原因：新版本缺陷、下游依赖故障、配置错误
"""
from runbookops.models import ActionKind, AnomalyType, Runbook, RunbookStep

RUNBOOK = Runbook(
    name="High Error Rate Remediation",
    description="More than 5% of recent log lines are errors for at least 1 minute",
    trigger=AnomalyType.HIGH_ERROR_RATE,
    steps=[
        RunbookStep(
            step_number=1,
            description="Check recent error messages for a common cause",
            action_kind=ActionKind.CHECK,
        ),
        RunbookStep(
            step_number=2,
            description="Update LOG_LEVEL to debug to capture more detail",
            action_kind=ActionKind.UPDATE,
            params={"envVar": "LOG_LEVEL", "value": "debug"},
            required=False,
        ),
        RunbookStep(
            step_number=3,
            description="Restart the container to clear transient failures",
            action_kind=ActionKind.RESTART,
        ),
        RunbookStep(
            step_number=4,
            description="Rollback the deployment if errors started after a recent release",
            action_kind=ActionKind.ROLLBACK,
            required=False,
        ),
        RunbookStep(
            step_number=5,
            description="Monitor the error rate for 5 minutes",
            action_kind=ActionKind.MONITOR,
        ),
    ],
    rollback_plan="Reset LOG_LEVEL to info once the error rate is back below 5%.",
    tags=["high_error_rate"],
)
