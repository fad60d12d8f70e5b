"""
RunbookOps 内置 Runbook - 内存尖峰
RunbookOps Built-in Runbook - Memory Spike

适用场景 (Applicable Scenarios):
- 容器内存使用率超过 80% 并持续 2 分钟 (Container memory above 80% for 2 minutes)
- 疑似内存泄漏导致使用量单调上升 (Suspected leak with monotonic growth)

修复策略 (Remediation Strategy):
1. 先确认趋势，排除短暂波动
2. 重启释放泄漏的内存，恢复服务
3. 扩容分摊负载，为排查争取时间
4. 必要时调整内存上限相关的环境变量

风险评估 (Risk Assessment):
- 重启会中断进行中的请求
- 每个目标每小时最多重启 3 次，由安全校验保证
"""
from runbookops.models import ActionKind, AnomalyType, Runbook, RunbookStep

RUNBOOK = Runbook(
    name="Memory Spike Remediation",
    description="Memory usage above 80% of the container limit for at least 2 minutes",
    trigger=AnomalyType.MEMORY_SPIKE,
    steps=[
        RunbookStep(
            step_number=1,
            description="Check memory trend over the last 5 minutes to confirm the spike",
            action_kind=ActionKind.CHECK,
        ),
        RunbookStep(
            step_number=2,
            description="Restart the affected container to release leaked memory",
            action_kind=ActionKind.RESTART,
        ),
        RunbookStep(
            step_number=3,
            description="Scale the service to 2 replicas if the spike persists",
            action_kind=ActionKind.SCALE,
            params={"replicas": 2},
            required=False,
        ),
        RunbookStep(
            step_number=4,
            description="Increase MAX_MEMORY if usage keeps hitting the limit",
            action_kind=ActionKind.UPDATE,
            params={"envVar": "MAX_MEMORY"},
            required=False,
        ),
        RunbookStep(
            step_number=5,
            description="Monitor memory usage for 10 minutes after remediation",
            action_kind=ActionKind.MONITOR,
        ),
    ],
    rollback_plan=(
        "If the restart does not reduce memory usage, roll back to the previous deployment.\n"
        "Scale back to 1 replica once memory is stable."
    ),
    tags=["memory_spike"],
)
