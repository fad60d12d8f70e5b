"""
回滚工具：在版本历史中找到最近一个镜像与当前不同的版本并应用它。

找不到可回滚的版本是预期结果，返回结构化失败而不是异常。
"""
from __future__ import annotations

import logging
from typing import Optional

from runbookops.backends.base import OrchestrationBackend, Revision, TargetSpecPatch
from runbookops.core.exceptions import NO_ROLLBACK_TARGET, VALIDATION_DENIED, RemediationError
from runbookops.models import OutcomeState, RollbackOutcome
from .safety import SafetyValidator
from .targets import require_service

logger = logging.getLogger(__name__)


def select_rollback_revision(history: list[Revision], current_image: str) -> Optional[Revision]:
    """按版本号从新到旧，跳过与当前镜像相同的版本。"""
    for revision in sorted(history, key=lambda r: r.revision, reverse=True):
        if revision.image and revision.image != current_image:
            return revision
    return None


async def rollback_deployment(
    backend: OrchestrationBackend,
    validator: SafetyValidator,
    service_name: str,
    reason: Optional[str] = None,
) -> RollbackOutcome:
    logger.info("Attempting to rollback %s (reason=%s)", service_name, reason)

    validation = validator.validate("rollback", {"serviceName": service_name})
    if not validation.allowed:
        return RollbackOutcome(
            success=False,
            state=OutcomeState.DENIED,
            error=VALIDATION_DENIED,
            service_name=service_name,
            message=f"Action blocked: {validation.reason}",
            suggestions=validation.suggestions,
        )

    try:
        require_service(service_name, backend.service_name)
        current_image = await backend.current_image(service_name)
        history = await backend.list_revision_history(service_name)
        candidate = select_rollback_revision(history, current_image)

        if candidate is None:
            logger.warning("No rollback target for %s (current image %s, %d revisions)",
                           service_name, current_image, len(history))
            return RollbackOutcome(
                success=False,
                state=OutcomeState.FAILED,
                error=NO_ROLLBACK_TARGET,
                service_name=service_name,
                previous_image=current_image,
                current_image=current_image,
                message=(
                    f"No previous revision with a different image found for {service_name} "
                    f"(current image: {current_image})"
                ),
                suggestions=["Deploy a known-good image explicitly"],
            )

        await backend.patch_target_spec(service_name, TargetSpecPatch(image=candidate.image))
    except RemediationError as e:
        logger.error("Failed to rollback %s: %s", service_name, e.message)
        return RollbackOutcome(
            success=False,
            state=OutcomeState.FAILED,
            error=e.error,
            service_name=service_name,
            message=f"Failed to rollback deployment: {e.message}",
        )

    logger.info("Rolled back %s from %s to %s (revision %d)",
                service_name, current_image, candidate.image, candidate.revision)
    return RollbackOutcome(
        success=True,
        state=OutcomeState.SUCCEEDED,
        service_name=service_name,
        previous_image=current_image,
        current_image=candidate.image,
        revision=candidate.revision,
        message=(
            f"Rolled back {service_name} from {current_image} to {candidate.image} "
            f"(revision {candidate.revision})"
        ),
    )
