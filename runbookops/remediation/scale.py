"""
扩缩容工具。

副本数范围是硬上限，越界时不经过安全校验直接拒绝。
副本数不变时不做任何后端写入。
没有声明式副本数的后端通过启停已有容器尽力而为，报告实际达到的数量。
"""
from __future__ import annotations

import logging
from typing import Optional

from runbookops.backends.base import OrchestrationBackend, TargetSpecPatch
from runbookops.core.exceptions import (
    PARTIAL_FAILURE,
    VALIDATION_DENIED,
    InvalidParameterError,
    RemediationError,
)
from runbookops.models import OutcomeState, ScaleOutcome, TargetState
from .safety import SafetyValidator
from .targets import require_service

logger = logging.getLogger(__name__)


async def _scale_by_instances(
    backend: OrchestrationBackend, previous: int, requested: int
) -> tuple[int, int]:
    """启停差额数量的容器，返回 (实际副本数, 失败的子操作数)。"""
    targets = await backend.list_targets()
    running = [t for t in targets if t.state == TargetState.RUNNING]
    failed = 0

    if requested > previous:
        spares = [t for t in targets if t.state != TargetState.RUNNING]
        started = 0
        for target in spares[: requested - previous]:
            try:
                await backend.start_target(target.id)
                started += 1
            except RemediationError as e:
                failed += 1
                logger.error("Failed to start %s during scale-up: %s", target.id, e.message)
        if len(spares) < requested - previous:
            logger.warning("Only %d spare instance(s) available to start", len(spares))
        return previous + started, failed

    stopped = 0
    for target in running[: previous - requested]:
        try:
            await backend.stop_target(target.id)
            stopped += 1
        except RemediationError as e:
            failed += 1
            logger.error("Failed to stop %s during scale-down: %s", target.id, e.message)
    return previous - stopped, failed


async def scale_service(
    backend: OrchestrationBackend,
    validator: SafetyValidator,
    service_name: str,
    replicas: int,
    reason: Optional[str] = None,
    min_replicas: int = 1,
    max_replicas: int = 5,
) -> ScaleOutcome:
    logger.info("Attempting to scale %s to %d replicas (reason=%s)", service_name, replicas, reason)

    if replicas < min_replicas or replicas > max_replicas:
        message = f"Replica count {replicas} outside allowed range ({min_replicas}-{max_replicas})"
        logger.warning("Scale of %s rejected: %s", service_name, message)
        return ScaleOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=InvalidParameterError.error,
            service_name=service_name,
            requested_replicas=replicas,
            message=message,
        )

    validation = validator.validate("scale", {"serviceName": service_name, "replicas": replicas})
    if not validation.allowed:
        return ScaleOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=VALIDATION_DENIED,
            service_name=service_name,
            requested_replicas=replicas,
            message=f"Action blocked: {validation.reason}",
            suggestions=validation.suggestions,
        )

    try:
        require_service(service_name, backend.service_name)
        previous = await backend.read_replicas(service_name)
        logger.info("Service %s currently has %d replicas, target %d", service_name, previous, replicas)

        if previous == replicas:
            return ScaleOutcome(
                success=True,
                state=OutcomeState.SUCCEEDED,
                service_name=service_name,
                requested_replicas=replicas,
                previous_replicas=previous,
                new_replicas=previous,
                message=f"Service {service_name} already at {replicas} replicas",
            )

        if backend.capabilities.declarative_scaling:
            await backend.patch_target_spec(service_name, TargetSpecPatch(replicas=replicas))
            achieved, failed = replicas, 0
        else:
            achieved, failed = await _scale_by_instances(backend, previous, replicas)
    except RemediationError as e:
        logger.error("Failed to scale %s to %d: %s", service_name, replicas, e.message)
        return ScaleOutcome(
            success=False,
            state=OutcomeState.FAILED,
            error=e.error,
            service_name=service_name,
            requested_replicas=replicas,
            message=f"Failed to scale service: {e.message}",
        )

    if failed:
        return ScaleOutcome(
            success=False,
            state=OutcomeState.FAILED,
            error=PARTIAL_FAILURE,
            service_name=service_name,
            requested_replicas=replicas,
            previous_replicas=previous,
            new_replicas=achieved,
            failed_operations=failed,
            partial=True,
            message=(
                f"Partially scaled {service_name} from {previous} to {achieved} replicas "
                f"({failed} operation(s) failed)"
            ),
        )

    return ScaleOutcome(
        success=True,
        state=OutcomeState.SUCCEEDED,
        service_name=service_name,
        requested_replicas=replicas,
        previous_replicas=previous,
        new_replicas=achieved,
        message=f"Scaled {service_name} from {previous} to {achieved} replicas",
    )
