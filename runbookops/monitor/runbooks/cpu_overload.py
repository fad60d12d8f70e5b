"""
RunbookOps 内置 Runbook - CPU 过载
RunbookOps Built-in Runbook - CPU Overload

适用场景 (Applicable Scenarios):
- 容器 CPU 使用率超过 90% 并持续 2 分钟 (Container CPU above 90% for 2 minutes)

修复策略 (Remediation Strategy):
先扩容分摊负载；扩容无效时重启，仍无效则回滚到上一版本。
"""
from runbookops.models import ActionKind, AnomalyType, Runbook, RunbookStep

RUNBOOK = Runbook(
    name="CPU Overload Remediation",
    description="CPU usage above 90% of the allotted cores for at least 2 minutes",
    trigger=AnomalyType.CPU_OVERLOAD,
    steps=[
        RunbookStep(
            step_number=1,
            description="Check whether the CPU load is caused by a traffic surge",
            action_kind=ActionKind.CHECK,
        ),
        RunbookStep(
            step_number=2,
            description="Scale the service up by one replica to spread the load",
            action_kind=ActionKind.SCALE,
        ),
        RunbookStep(
            step_number=3,
            description="Restart the container if CPU stays above the threshold",
            action_kind=ActionKind.RESTART,
            required=False,
        ),
        RunbookStep(
            step_number=4,
            description="Monitor CPU usage for 10 minutes",
            action_kind=ActionKind.MONITOR,
        ),
    ],
    rollback_plan="Scale back to the original replica count once CPU usage is below 70%.",
    tags=["cpu_overload"],
)
