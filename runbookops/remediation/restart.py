"""
重启工具：校验 → 解析目标 → 重启（删除重建或原地重启）→ 轮询直到有目标运行。

收敛判定优先选择重启前不存在的新实例；截止时间到达仍未出现新实例时，
退而接受任一运行中的实例（原地重启的单容器没有新标识）。
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from runbookops.backends.base import OrchestrationBackend, TargetDescriptor
from runbookops.core.exceptions import VALIDATION_DENIED, ConvergenceTimeoutError, RemediationError
from runbookops.models import OutcomeState, RestartOutcome, TargetState
from .safety import SafetyValidator
from .targets import addresses_service, select_targets

logger = logging.getLogger(__name__)


def find_running_replacement(
    targets: list[TargetDescriptor], previous_ids: set[str], allow_existing: bool = False
) -> Optional[TargetDescriptor]:
    running = [t for t in targets if t.state == TargetState.RUNNING]
    fresh = next((t for t in running if t.id not in previous_ids), None)
    if fresh is not None:
        return fresh
    if allow_existing and running:
        return running[0]
    return None


async def wait_for_running(
    backend: OrchestrationBackend,
    previous_ids: set[str],
    timeout_ms: int,
    poll_interval_ms: int,
    clock: Callable[[], float] = time.monotonic,
) -> TargetDescriptor:
    """按固定间隔轮询，直到出现运行中的目标或超过截止时间。"""
    deadline = clock() + timeout_ms / 1000
    while True:
        targets = await backend.list_targets()
        expired = clock() >= deadline
        running = find_running_replacement(targets, previous_ids, allow_existing=expired)
        if running is not None:
            return running
        if expired:
            raise ConvergenceTimeoutError(
                f"Targets did not reach running state within {timeout_ms}ms after restart"
            )
        await asyncio.sleep(poll_interval_ms / 1000)


async def restart_container(
    backend: OrchestrationBackend,
    validator: SafetyValidator,
    container_id: str,
    reason: Optional[str] = None,
    timeout_ms: int = 15000,
    poll_interval_ms: int = 500,
    clock: Callable[[], float] = time.monotonic,
) -> RestartOutcome:
    logger.info("Attempting to restart container %s (reason=%s)", container_id, reason)

    validation = validator.validate("restart", {"containerId": container_id})
    if not validation.allowed:
        return RestartOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=VALIDATION_DENIED,
            container_id=container_id,
            message=f"Action blocked: {validation.reason}",
            suggestions=validation.suggestions,
        )

    try:
        all_targets = await backend.list_targets()
        targets = select_targets(all_targets, container_id, backend.service_name)
        previous_state = targets[0].state.value

        if backend.capabilities.in_place_restart:
            for target in targets:
                await backend.restart_target(target.id)
            previous_ids: set[str] = set()
        else:
            ids = None if addresses_service(container_id, backend.service_name) else [t.id for t in targets]
            await backend.delete_targets(ids)
            previous_ids = {t.id for t in all_targets}

        running = await wait_for_running(backend, previous_ids, timeout_ms, poll_interval_ms, clock)
    except RemediationError as e:
        logger.error("Failed to restart container %s: %s", container_id, e.message)
        return RestartOutcome(
            success=False,
            state=OutcomeState.FAILED,
            error=e.error,
            container_id=container_id,
            message=f"Failed to restart container: {e.message}",
        )

    logger.info("Container %s restarted (new target %s, %s -> %s)",
                container_id, running.id, previous_state, running.state.value)
    return RestartOutcome(
        success=True,
        state=OutcomeState.SUCCEEDED,
        container_id=running.id,
        container_name=running.name,
        previous_state=previous_state,
        new_state=running.state.value,
        message=(
            f"Restarted {running.name} ({len(targets)} target(s)). "
            f"Previous state: {previous_state}, New state: {running.state.value}"
        ),
    )
