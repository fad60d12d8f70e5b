"""
RunbookOps 自愈系统 (RunbookOps Self-Healing System)

监控容器/Pod 的指标与日志，识别异常，匹配 Runbook，并通过安全闸门执行修复。
Monitors container/pod metrics and logs, classifies anomalies, selects a runbook,
and applies remediation through a safety gate.

## 系统架构 (System Architecture)

```
指标 / 日志 (Metrics / Logs)
    ↓
异常检测 (Anomaly Detection)
    ↓
Runbook 匹配 (Runbook Selection)
    ↓
Agent 决策 (Agent Decision, external)
    ↓
安全校验 (Safety Validation)
    ↓
修复执行 (Remediation: restart / scale / update env / rollback)
```

## 核心组件 (Core Components)

- **MetricsCollector**: 指标归一化（CPU%、内存%）
- **LogReader**: 日志级别分类与多副本合并
- **AnomalyDetector**: 有序阈值规则
- **RunbookRegistry**: 异常类型 → Runbook
- **SafetyValidator**: 黑名单、限流、间隔、动作账本
- **RemediationExecutor**: 四个带安全闸门的修复工具

## 已知限制 (Known Limitations)

动作账本只保存在内存中，进程重启后限流计数清零。
The action ledger is in-memory only; rate limits reset when the process restarts.
"""

__version__ = "1.0.0"
