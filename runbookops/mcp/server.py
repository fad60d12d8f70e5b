"""
RunbookOps MCP Server (Model Context Protocol Server)

通过 MCP 协议把监控与修复能力暴露给 AI Agent。
Exposes monitoring and remediation operations to AI agents over MCP.

两个服务共享同一个运行时（后端、安全校验器、采集器、检测器、注册表、执行器只构造一次）：
- monitor: get-container-logs, get-container-metrics, detect-anomaly, get-runbook
- executor: restart-container, scale-service, update-env-vars, rollback-deployment, get-action-history

每个工具返回可 JSON 序列化的字典，至少包含 success、message、timestamp。
"""
import logging
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from runbookops.backends import OrchestrationBackend, build_backend
from runbookops.core.config import Settings
from runbookops.core.exceptions import RemediationError
from runbookops.models import utcnow
from runbookops.monitor.detector import AnomalyDetector
from runbookops.monitor.logs import LogReader
from runbookops.monitor.metrics import MetricsCollector
from runbookops.monitor.runbook_registry import RunbookRegistry
from runbookops.remediation import RemediationExecutor, SafetyLimits, SafetyValidator

logger = logging.getLogger(__name__)


def _error_envelope(e: RemediationError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": e.error,
        "message": e.message,
        "detail": e.detail,
        "timestamp": utcnow().isoformat(),
    }


class RunbookOpsRuntime:
    """进程内唯一的组件集合，两个 MCP 服务共用。"""

    def __init__(
        self,
        backend: OrchestrationBackend,
        settings: Settings,
        validator: Optional[SafetyValidator] = None,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.validator = validator or SafetyValidator(SafetyLimits.from_settings(settings))
        self.collector = MetricsCollector(
            backend,
            metrics_url=settings.metrics_url,
            metrics_prefix=settings.metrics_prefix,
            default_memory_limit_bytes=settings.default_memory_limit_bytes,
            timeout_seconds=settings.metrics_timeout_seconds,
        )
        self.log_reader = LogReader(backend)
        self.detector = AnomalyDetector(self.collector, self.log_reader)
        self.registry = RunbookRegistry(settings.runbook_dir)
        self.executor = RemediationExecutor.from_settings(backend, self.validator, settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunbookOpsRuntime":
        return cls(build_backend(settings), settings)

    # === 监控 ===

    async def get_container_logs(self, container_id: str, lines: int = 100, level: str = "ALL") -> Dict[str, Any]:
        try:
            logs = await self.log_reader.get_logs(container_id, lines, level)
        except RemediationError as e:
            logger.error("Failed to fetch logs for %s: %s", container_id, e.message)
            return {**_error_envelope(e), "logs": [], "totalLines": 0}
        return {
            "success": True,
            "logs": [entry.model_dump(mode="json") for entry in logs],
            "totalLines": len(logs),
            "message": f"Fetched {len(logs)} log entries",
            "timestamp": utcnow().isoformat(),
        }

    async def get_container_metrics(self, container_id: str) -> Dict[str, Any]:
        try:
            sample = await self.collector.get_metrics(container_id)
        except RemediationError as e:
            logger.error("Failed to fetch metrics for %s: %s", container_id, e.message)
            return _error_envelope(e)
        return {
            "success": True,
            "metrics": sample.reading.model_dump(mode="json"),
            "containerId": sample.target.id,
            "containerName": sample.target.name,
            "state": sample.target.state.value,
            "message": (
                f"cpu={sample.reading.cpu_percent}% memory={sample.reading.memory_percent}%"
            ),
            "timestamp": utcnow().isoformat(),
        }

    async def detect_anomaly(self, container_id: str) -> Dict[str, Any]:
        try:
            report = await self.detector.scan(container_id)
        except RemediationError as e:
            logger.error("Failed to detect anomaly for %s: %s", container_id, e.message)
            return {**_error_envelope(e), "anomaly": None, "checksPerformed": []}
        anomaly = report.anomaly
        return {
            "success": True,
            "anomaly": anomaly.model_dump(mode="json") if anomaly else None,
            "checksPerformed": report.checks_performed,
            "message": anomaly.summary() if anomaly else "No anomalies detected",
            "timestamp": report.observed_at.isoformat(),
        }

    def get_runbook(self, anomaly_type: str) -> Dict[str, Any]:
        try:
            runbook = self.registry.select(anomaly_type)
        except RemediationError as e:
            logger.error("Failed to fetch runbook for %s: %s", anomaly_type, e.message)
            return _error_envelope(e)
        return {
            "success": True,
            "runbook": runbook.model_dump(mode="json"),
            "source": runbook.source,
            "message": f"{runbook.name} ({len(runbook.steps)} steps)",
            "timestamp": utcnow().isoformat(),
        }

    # === 修复 ===

    async def restart_container(self, container_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        outcome = await self.executor.restart(container_id, reason)
        return outcome.model_dump(mode="json")

    async def scale_service(self, service_name: str, replicas: int, reason: Optional[str] = None) -> Dict[str, Any]:
        outcome = await self.executor.scale(service_name, replicas, reason)
        return outcome.model_dump(mode="json")

    async def update_env_vars(
        self,
        container_id: str,
        env_vars: Dict[str, str],
        restart: bool = False,
        force_restart: bool = False,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        outcome = await self.executor.update_env(container_id, env_vars, restart, force_restart, reason)
        return outcome.model_dump(mode="json")

    async def rollback_deployment(self, service_name: str, reason: Optional[str] = None) -> Dict[str, Any]:
        outcome = await self.executor.rollback(service_name, reason)
        return outcome.model_dump(mode="json")

    def get_action_history(self) -> Dict[str, Any]:
        history = self.validator.ledger.history()
        return {
            "success": True,
            "history": [entry.model_dump(mode="json") for entry in history],
            "message": f"{len(history)} action(s) in the last 24 hours",
            "timestamp": utcnow().isoformat(),
        }


def create_monitor_server(runtime: RunbookOpsRuntime) -> FastMCP:
    server = FastMCP("runbookops-monitor")

    @server.tool(name="get-container-logs")
    async def get_container_logs(containerId: str, lines: int = 100, level: str = "ALL") -> Dict[str, Any]:
        """Fetch recent logs for a container, newest first, optionally filtered by level (ALL, DEBUG, INFO, WARN, ERROR, FATAL)."""
        logger.info("Tool get-container-logs called (containerId=%s, lines=%d, level=%s)", containerId, lines, level)
        return await runtime.get_container_logs(containerId, lines, level)

    @server.tool(name="get-container-metrics")
    async def get_container_metrics(containerId: str) -> Dict[str, Any]:
        """Get normalized CPU and memory usage for a container."""
        logger.info("Tool get-container-metrics called (containerId=%s)", containerId)
        return await runtime.get_container_metrics(containerId)

    @server.tool(name="detect-anomaly")
    async def detect_anomaly(containerId: str) -> Dict[str, Any]:
        """Check a container for memory spikes, CPU overload and high error rates."""
        logger.info("Tool detect-anomaly called (containerId=%s)", containerId)
        return await runtime.detect_anomaly(containerId)

    @server.tool(name="get-runbook")
    async def get_runbook(anomalyType: str) -> Dict[str, Any]:
        """Get the remediation runbook for MEMORY_SPIKE, CPU_OVERLOAD or HIGH_ERROR_RATE."""
        logger.info("Tool get-runbook called (anomalyType=%s)", anomalyType)
        return runtime.get_runbook(anomalyType)

    return server


def create_executor_server(runtime: RunbookOpsRuntime) -> FastMCP:
    server = FastMCP("runbookops-executor")

    @server.tool(name="restart-container")
    async def restart_container(containerId: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Restart a container (or every pod of the service) and wait until it is running again."""
        logger.info("Tool restart-container called (containerId=%s)", containerId)
        return await runtime.restart_container(containerId, reason)

    @server.tool(name="scale-service")
    async def scale_service(serviceName: str, replicas: int, reason: Optional[str] = None) -> Dict[str, Any]:
        """Scale a service to the given replica count (1-5)."""
        logger.info("Tool scale-service called (serviceName=%s, replicas=%d)", serviceName, replicas)
        return await runtime.scale_service(serviceName, replicas, reason)

    @server.tool(name="update-env-vars")
    async def update_env_vars(
        containerId: str,
        envVars: Dict[str, str],
        restart: bool = False,
        forceRestart: bool = False,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update whitelisted environment variables; set restart=true to apply them."""
        logger.info("Tool update-env-vars called (containerId=%s, vars=%s, restart=%s)",
                    containerId, sorted(envVars), restart)
        return await runtime.update_env_vars(containerId, envVars, restart, forceRestart, reason)

    @server.tool(name="rollback-deployment")
    async def rollback_deployment(serviceName: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Roll a deployment back to the most recent revision with a different image."""
        logger.info("Tool rollback-deployment called (serviceName=%s)", serviceName)
        return await runtime.rollback_deployment(serviceName, reason)

    @server.tool(name="get-action-history")
    async def get_action_history() -> Dict[str, Any]:
        """List remediation actions allowed by the safety validator in the last 24 hours."""
        return runtime.get_action_history()

    return server


SERVER_FACTORIES = {
    "monitor": create_monitor_server,
    "executor": create_executor_server,
}
