"""
异常检测服务 (Anomaly Detection Service)

功能描述 (Description):
    对单个目标执行一次阈值检测，最多产出一条告警。
    Runs one threshold evaluation for a single target and emits at most one alert.

检测顺序 (Rule Order, first match wins):
    1. 内存 (Memory) - memory_percent > 80，> 90 为 CRITICAL
    2. CPU - cpu_percent > 90，> 95 为 CRITICAL
    3. 错误率 (Error Rate) - ERROR 日志占比 > 5%，> 20% 为 CRITICAL

    指标检查开销最小，放在日志扫描之前；顺序固定，测试依赖这一点。
    日志窗口为空时跳过错误率检查，不足的数据不产生告警。
"""
from __future__ import annotations

import logging
from typing import Optional

from runbookops.core.exceptions import (
    MetricsUnavailableError,
    RemediationError,
    TargetNotFoundError,
)
from runbookops.models import (
    AnomalyAlert,
    AnomalyType,
    DetectionReport,
    LogLevel,
    Severity,
    Threshold,
)
from .logs import LogReader
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

MEMORY_THRESHOLD_PERCENT = 80
MEMORY_CRITICAL_PERCENT = 90
CPU_THRESHOLD_PERCENT = 90
CPU_CRITICAL_PERCENT = 95
ERROR_RATE_THRESHOLD_PERCENT = 5
ERROR_RATE_CRITICAL_PERCENT = 20

ERROR_LOG_WINDOW = 100
RECENT_ERRORS_IN_CONTEXT = 5

CHECK_METRICS = "metrics"
CHECK_ERROR_LOGS = "error-logs"


class AnomalyDetector:
    """指标 + 日志的有序阈值检测器。"""

    def __init__(self, collector: MetricsCollector, log_reader: LogReader) -> None:
        self.collector = collector
        self.log_reader = log_reader

    async def detect(self, target_id: str) -> Optional[AnomalyAlert]:
        return (await self.scan(target_id)).anomaly

    async def scan(self, target_id: str) -> DetectionReport:
        """
        执行一次完整检测 (Run One Detection Cycle)

        Raises:
            MetricsUnavailableError: 无法取得指标读数
            TargetNotFoundError: 标识不匹配任何目标
        """
        logger.info("Detecting anomalies for %s", target_id)
        checks: list[str] = []

        try:
            sample = await self.collector.get_metrics(target_id)
        except (TargetNotFoundError, MetricsUnavailableError):
            raise
        except RemediationError as e:
            raise MetricsUnavailableError(
                f"Failed to fetch container metrics: {e.message}", detail=e.detail
            ) from e

        metrics = sample.reading
        target_name = sample.target.name or target_id
        checks.append(CHECK_METRICS)

        if metrics.memory_percent > MEMORY_THRESHOLD_PERCENT:
            alert = AnomalyAlert(
                type=AnomalyType.MEMORY_SPIKE,
                severity=Severity.CRITICAL if metrics.memory_percent > MEMORY_CRITICAL_PERCENT else Severity.HIGH,
                target_id=target_id,
                target_name=target_name,
                metrics_snapshot=metrics,
                threshold=Threshold(metric="memory", value=MEMORY_THRESHOLD_PERCENT, duration_seconds=120),
                message=(
                    f"Memory usage at {metrics.memory_percent:.2f}% exceeds threshold "
                    f"of {MEMORY_THRESHOLD_PERCENT}%"
                ),
            )
            return self._report(alert, checks)

        if metrics.cpu_percent > CPU_THRESHOLD_PERCENT:
            alert = AnomalyAlert(
                type=AnomalyType.CPU_OVERLOAD,
                severity=Severity.CRITICAL if metrics.cpu_percent > CPU_CRITICAL_PERCENT else Severity.HIGH,
                target_id=target_id,
                target_name=target_name,
                metrics_snapshot=metrics,
                threshold=Threshold(metric="cpu", value=CPU_THRESHOLD_PERCENT, duration_seconds=120),
                message=(
                    f"CPU usage at {metrics.cpu_percent:.2f}% exceeds threshold "
                    f"of {CPU_THRESHOLD_PERCENT}%"
                ),
            )
            return self._report(alert, checks)

        checks.append(CHECK_ERROR_LOGS)
        try:
            error_logs = await self.log_reader.get_logs(target_id, ERROR_LOG_WINDOW, LogLevel.ERROR.value)
            all_logs = await self.log_reader.get_logs(target_id, ERROR_LOG_WINDOW)
        except RemediationError as e:
            logger.warning("Skipped error-rate check for %s: %s", target_id, e.message)
            return self._report(None, checks)

        if not all_logs:
            logger.info("Skipped error-rate check for %s due to empty log window", target_id)
            return self._report(None, checks)

        error_rate = len(error_logs) / len(all_logs) * 100
        if error_rate > ERROR_RATE_THRESHOLD_PERCENT:
            alert = AnomalyAlert(
                type=AnomalyType.HIGH_ERROR_RATE,
                severity=Severity.CRITICAL if error_rate > ERROR_RATE_CRITICAL_PERCENT else Severity.HIGH,
                target_id=target_id,
                target_name=target_name,
                metrics_snapshot=metrics,
                threshold=Threshold(metric="errorRate", value=ERROR_RATE_THRESHOLD_PERCENT, duration_seconds=60),
                message=(
                    f"Error rate at {error_rate:.2f}% exceeds threshold "
                    f"of {ERROR_RATE_THRESHOLD_PERCENT}%"
                ),
                context={
                    "errorCount": len(error_logs),
                    "totalLogs": len(all_logs),
                    "recentErrors": [e.message for e in error_logs[:RECENT_ERRORS_IN_CONTEXT]],
                },
            )
            return self._report(alert, checks)

        logger.info("No anomalies detected for %s (memory=%.2f%%, cpu=%.2f%%)",
                    target_id, metrics.memory_percent, metrics.cpu_percent)
        return self._report(None, checks)

    @staticmethod
    def _report(alert: Optional[AnomalyAlert], checks: list[str]) -> DetectionReport:
        if alert is not None:
            logger.warning("Anomaly detected: %s", alert.summary())
        return DetectionReport(anomaly=alert, checks_performed=checks)
