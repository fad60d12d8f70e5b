"""修复执行器：把四个修复工具绑定到同一个后端与安全校验器。"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from runbookops.backends.base import OrchestrationBackend
from runbookops.core.config import Settings
from runbookops.models import RestartOutcome, RollbackOutcome, ScaleOutcome, UpdateEnvOutcome
from .restart import restart_container
from .rollback import rollback_deployment
from .safety import SafetyValidator
from .scale import scale_service
from .update_env import update_env_vars

logger = logging.getLogger(__name__)


class RemediationExecutor:
    """所有修复动作的入口。工具从不抛出异常，失败以结果对象返回。"""

    def __init__(
        self,
        backend: OrchestrationBackend,
        validator: SafetyValidator,
        restart_timeout_ms: int = 15000,
        restart_poll_interval_ms: int = 500,
        min_replicas: int = 1,
        max_replicas: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.validator = validator
        self.restart_timeout_ms = restart_timeout_ms
        self.restart_poll_interval_ms = restart_poll_interval_ms
        self.min_replicas = min_replicas
        self.max_replicas = max_replicas
        self.clock = clock

    @classmethod
    def from_settings(cls, backend: OrchestrationBackend, validator: SafetyValidator,
                      settings: Settings) -> "RemediationExecutor":
        return cls(
            backend,
            validator,
            restart_timeout_ms=settings.restart_ready_timeout_ms,
            restart_poll_interval_ms=settings.restart_poll_interval_ms,
            min_replicas=settings.min_replicas,
            max_replicas=settings.max_replicas,
        )

    async def restart(self, container_id: str, reason: Optional[str] = None) -> RestartOutcome:
        return await restart_container(
            self.backend, self.validator, container_id, reason,
            timeout_ms=self.restart_timeout_ms,
            poll_interval_ms=self.restart_poll_interval_ms,
            clock=self.clock,
        )

    async def scale(self, service_name: str, replicas: int, reason: Optional[str] = None) -> ScaleOutcome:
        return await scale_service(
            self.backend, self.validator, service_name, replicas, reason,
            min_replicas=self.min_replicas, max_replicas=self.max_replicas,
        )

    async def update_env(
        self,
        container_id: str,
        env_vars: dict[str, str],
        restart: bool = False,
        force_restart: bool = False,
        reason: Optional[str] = None,
    ) -> UpdateEnvOutcome:
        return await update_env_vars(
            self.backend, self.validator, container_id, env_vars,
            restart=restart, force_restart=force_restart, reason=reason,
        )

    async def rollback(self, service_name: str, reason: Optional[str] = None) -> RollbackOutcome:
        return await rollback_deployment(self.backend, self.validator, service_name, reason)
