"""
指标归一化模块 (Metrics Normalizer)

把后端原始指标转换为统一的 MetricsReading：
- 容器运行时统计（Docker stats）：使用前后两次 CPU 计数的差值；
- Prometheus 文本格式端点：使用累计 CPU 秒数，按目标缓存上一次采样求速率。

每个目标的首次采样返回 CPU 0，避免冷启动时出现虚假尖峰。
"""
from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from runbookops.backends.base import OrchestrationBackend, ResourceSnapshot, TargetDescriptor
from runbookops.core.exceptions import MetricsUnavailableError
from runbookops.models import MetricsReading, TargetState
from runbookops.remediation.targets import select_primary_target
from .quantity import parse_cpu_quantity_to_cores, parse_memory_quantity_to_bytes

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
_NUMBER = r"([-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)"


def get_prom_metric_value(payload: str, metric_name: str) -> float:
    """取 `name{labels} value` 行的数值，缺失或非法时返回 0。"""
    pattern = re.compile(rf"^{re.escape(metric_name)}(?:\{{[^}}]*\}})?\s+{_NUMBER}$", re.MULTILINE)
    match = pattern.search(payload)
    if not match:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        return 0.0


@dataclass
class _Sample:
    value: float
    sampled_at: float


@dataclass
class TargetMetrics:
    target: TargetDescriptor
    reading: MetricsReading


def _zero_reading() -> MetricsReading:
    return MetricsReading(
        cpu_percent=0.0,
        memory_percent=0.0,
        memory_usage_bytes=0,
        memory_limit_bytes=0,
        network_bytes_per_sec=0.0,
    )


def _clamp(value: float, upper: float = 100.0) -> float:
    return max(0.0, min(value, upper))


class MetricsCollector:
    """单个目标的指标读取与归一化。"""

    def __init__(
        self,
        backend: OrchestrationBackend,
        metrics_url: str,
        metrics_prefix: str = "demo_app_",
        default_memory_limit_bytes: int = 512 * MIB,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.metrics_url = metrics_url
        self.metrics_prefix = metrics_prefix
        self.default_memory_limit_bytes = default_memory_limit_bytes
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._cpu_samples: dict[str, _Sample] = {}
        self._network_samples: dict[str, _Sample] = {}
        self._lock = threading.Lock()

    async def get_metrics(self, target_id: str) -> TargetMetrics:
        targets = await self.backend.list_targets()
        target = select_primary_target(targets, target_id, self.backend.service_name)

        if target.state != TargetState.RUNNING:
            logger.info("Target %s is %s, reporting zero metrics", target.id, target.state.value)
            return TargetMetrics(target=target, reading=_zero_reading())

        snapshot = None
        if self.backend.capabilities.resource_snapshots:
            snapshot = await self.backend.read_resource_snapshot(target.id)

        if snapshot is not None:
            reading = self._reading_from_snapshot(target, snapshot)
        else:
            reading = self._reading_from_exposition(target, await self.scrape())

        logger.info("Metrics for %s: cpu=%.2f%% memory=%.2f%%",
                    target.id, reading.cpu_percent, reading.memory_percent)
        return TargetMetrics(target=target, reading=reading)

    async def get_reading(self, target_id: str) -> MetricsReading:
        return (await self.get_metrics(target_id)).reading

    async def scrape(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.get(self.metrics_url)
                resp.raise_for_status()
                return resp.text
        except httpx.HTTPStatusError as e:
            raise MetricsUnavailableError(
                f"Failed to fetch metrics endpoint: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise MetricsUnavailableError(f"Failed to fetch metrics endpoint: {e}") from e

    # === 限额 ===

    def memory_limit_for(self, target: TargetDescriptor) -> int:
        parsed = parse_memory_quantity_to_bytes(target.memory_limit)
        return parsed if parsed > 0 else self.default_memory_limit_bytes

    @staticmethod
    def cpu_limit_for(target: TargetDescriptor) -> float:
        parsed = parse_cpu_quantity_to_cores(target.cpu_limit)
        return parsed if parsed > 0 else 1.0

    # === 文本格式端点 ===

    def cpu_seconds_total(self, payload: str) -> float:
        total = get_prom_metric_value(payload, f"{self.metrics_prefix}process_cpu_seconds_total")
        if total > 0:
            return total
        user = get_prom_metric_value(payload, f"{self.metrics_prefix}process_cpu_user_seconds_total")
        system = get_prom_metric_value(payload, f"{self.metrics_prefix}process_cpu_system_seconds_total")
        return user + system

    def _rate(self, cache: dict[str, _Sample], key: str, value: float, now: float) -> float:
        """累计计数器的每秒速率；首次采样或计数回退时返回 0。"""
        with self._lock:
            previous = cache.get(key)
            cache[key] = _Sample(value=value, sampled_at=now)

        if previous is None or value <= 0:
            return 0.0
        elapsed = now - previous.sampled_at
        if elapsed <= 0:
            return 0.0
        delta = value - previous.value
        if delta <= 0:
            return 0.0
        return delta / elapsed

    def compute_cpu_percent(self, key: str, cpu_seconds_total: float, now: float,
                            cpu_limit_cores: float) -> float:
        cores_consumed = self._rate(self._cpu_samples, key, cpu_seconds_total, now)
        limit = cpu_limit_cores if cpu_limit_cores > 0 else 1.0
        return _clamp(cores_consumed / limit * 100)

    def _reading_from_exposition(self, target: TargetDescriptor, payload: str) -> MetricsReading:
        memory_usage = max(get_prom_metric_value(payload, f"{self.metrics_prefix}memory_usage_mb"), 0) * MIB
        memory_limit = self.memory_limit_for(target)
        memory_percent = _clamp(memory_usage / memory_limit * 100) if memory_limit > 0 else 0.0

        cpu_percent = self.compute_cpu_percent(
            target.id, self.cpu_seconds_total(payload), self.clock(), self.cpu_limit_for(target)
        )
        return MetricsReading(
            cpu_percent=round(cpu_percent, 2),
            memory_percent=round(memory_percent, 2),
            memory_usage_bytes=round(memory_usage),
            memory_limit_bytes=memory_limit,
            network_bytes_per_sec=0.0,
        )

    # === 运行时统计 ===

    def _reading_from_snapshot(self, target: TargetDescriptor, snapshot: ResourceSnapshot) -> MetricsReading:
        cores = snapshot.online_cpus or 1
        busy_delta = snapshot.cpu_total_usage - snapshot.precpu_total_usage
        total_delta = snapshot.system_cpu_usage - snapshot.presystem_cpu_usage
        host_percent = 0.0
        if total_delta > 0 and busy_delta > 0:
            host_percent = _clamp(busy_delta / total_delta * cores * 100, upper=100.0 * cores)
        limit_cores = parse_cpu_quantity_to_cores(target.cpu_limit) or float(cores)
        cpu_percent = _clamp(host_percent / limit_cores)

        memory_limit = snapshot.memory_limit_bytes or self.memory_limit_for(target)
        memory_usage = snapshot.memory_usage_bytes
        memory_percent = _clamp(memory_usage / memory_limit * 100) if memory_limit > 0 else 0.0

        network_rate = self._rate(
            self._network_samples, target.id, float(snapshot.network_bytes_total), self.clock()
        )
        return MetricsReading(
            cpu_percent=round(cpu_percent, 2),
            memory_percent=round(memory_percent, 2),
            memory_usage_bytes=memory_usage,
            memory_limit_bytes=memory_limit,
            network_bytes_per_sec=round(network_rate, 2),
        )

