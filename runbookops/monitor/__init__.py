"""
监控模块 (Monitoring)

指标归一化、日志分级、异常检测与 Runbook 选择。只读取后端，不做任何修改。

Metrics normalization, log classification, anomaly detection and runbook
selection. Read-only against the backend.
"""
