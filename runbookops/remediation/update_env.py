"""
环境变量更新工具。

白名单检查是整体性的：只要有一个变量不在白名单内，整个请求被拒绝，不应用任何变量。
合并结果按键排序。restart=False 时只报告暂存的合并结果，不写入后端。
合并后没有实际变化时不触发重启，除非调用方显式要求 force_restart。
日志只记录变量名，从不记录变量值。
"""
from __future__ import annotations

import logging
from typing import Optional

from runbookops.backends.base import OrchestrationBackend, TargetDescriptor, TargetSpecPatch
from runbookops.core.exceptions import VALIDATION_DENIED, InvalidParameterError, RemediationError
from runbookops.models import OutcomeState, UpdateEnvOutcome
from .safety import ENV_VAR_WHITELIST, SafetyValidator, non_whitelisted
from .targets import select_targets

logger = logging.getLogger(__name__)


def merge_env(current: dict[str, str], updates: dict[str, str]) -> dict[str, str]:
    merged = dict(current)
    merged.update(updates)
    return dict(sorted(merged.items()))


def changed_keys(current: dict[str, str], merged: dict[str, str]) -> list[str]:
    return sorted(k for k, v in merged.items() if current.get(k) != v)


def _apply_ids(
    backend: OrchestrationBackend, container_id: str, targets: list[TargetDescriptor]
) -> list[str]:
    """逐实例后端对每个匹配目标生效；部署级后端只对整个服务修改一次。"""
    if backend.capabilities.in_place_restart:
        return [t.id for t in targets]
    return [container_id]


async def update_env_vars(
    backend: OrchestrationBackend,
    validator: SafetyValidator,
    container_id: str,
    env_vars: dict[str, str],
    restart: bool = False,
    force_restart: bool = False,
    reason: Optional[str] = None,
) -> UpdateEnvOutcome:
    requested = sorted(env_vars)
    logger.info("Attempting to update env vars %s on %s (restart=%s, reason=%s)",
                requested, container_id, restart, reason)

    invalid = non_whitelisted(env_vars)
    if not env_vars or invalid:
        if invalid:
            message = (
                f"Blocked: Environment variables not whitelisted: {', '.join(invalid)}. "
                f"Allowed: {', '.join(sorted(ENV_VAR_WHITELIST))}"
            )
        else:
            message = "Blocked: No environment variables supplied"
        logger.warning("Env update on %s rejected by whitelist: %s", container_id, invalid)
        return UpdateEnvOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=InvalidParameterError.error,
            container_id=container_id,
            message=message,
        )

    validation = validator.validate("update-env", {"containerId": container_id})
    if not validation.allowed:
        return UpdateEnvOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=VALIDATION_DENIED,
            container_id=container_id,
            message=f"Action blocked: {validation.reason}",
            suggestions=validation.suggestions,
        )

    try:
        targets = select_targets(await backend.list_targets(), container_id, backend.service_name)
        current = await backend.read_env(targets[0].id)
        merged = merge_env(current, {k: str(v) for k, v in env_vars.items()})
        changed = changed_keys(current, merged)
        logger.info("Environment prepared for %s (updated=%s, changed=%s)", container_id, requested, changed)

        if not restart:
            return UpdateEnvOutcome(
                success=True,
                state=OutcomeState.SUCCEEDED,
                container_id=container_id,
                updated_vars=requested,
                changed_vars=changed,
                message=(
                    f"Updated environment variables: {', '.join(requested)}. "
                    "Restart required for changes to take effect."
                ),
            )

        restarted = bool(changed) or force_restart
        if restarted:
            for target_id in _apply_ids(backend, container_id, targets):
                if changed:
                    await backend.patch_target_spec(target_id, TargetSpecPatch(env=merged))
                else:
                    await backend.rollout_restart(target_id)
    except RemediationError as e:
        logger.error("Failed to update env vars %s on %s: %s", requested, container_id, e.message)
        return UpdateEnvOutcome(
            success=False,
            state=OutcomeState.FAILED,
            error=e.error,
            container_id=container_id,
            updated_vars=requested,
            message=f"Failed to update environment variables: {e.message}",
        )

    if restarted:
        tail = "Container restarted." if changed else "No changes detected, forced restart triggered."
    else:
        tail = "No changes detected, restart skipped."
    logger.info("Env update on %s finished (applied=%s, restarted=%s)", container_id, bool(changed), restarted)
    return UpdateEnvOutcome(
        success=True,
        state=OutcomeState.SUCCEEDED,
        container_id=container_id,
        updated_vars=requested,
        changed_vars=changed,
        applied=bool(changed),
        restarted=restarted,
        message=f"Updated environment variables: {', '.join(requested)}. {tail}",
    )
