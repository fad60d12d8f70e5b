"""目标解析：把调用方给出的标识解析为一个或多个后端目标。"""
from __future__ import annotations

from runbookops.backends.base import TargetDescriptor
from runbookops.core.exceptions import TargetNotFoundError
from runbookops.models import TargetState


def addresses_service(identifier: str, service_name: str) -> bool:
    normalized = identifier.strip()
    return not normalized or normalized == service_name


def select_targets(
    targets: list[TargetDescriptor], identifier: str, service_name: str
) -> list[TargetDescriptor]:
    """精确匹配优先，其次子串匹配；标识为服务名（或为空）时返回全部目标。"""
    if not targets:
        raise TargetNotFoundError(f"No targets found for service {service_name}")

    if addresses_service(identifier, service_name):
        return list(targets)

    normalized = identifier.strip()
    exact = [t for t in targets if normalized in (t.id, t.name)]
    if exact:
        return exact

    partial = [t for t in targets if normalized in t.id or normalized in t.name]
    if partial:
        return partial

    raise TargetNotFoundError(f"No target matches identifier: {identifier}")


def select_primary_target(
    targets: list[TargetDescriptor], identifier: str, service_name: str
) -> TargetDescriptor:
    """单目标读取（指标）：服务名地址下优先选运行中的目标。"""
    matches = select_targets(targets, identifier, service_name)
    if addresses_service(identifier, service_name) or len(matches) > 1:
        running = [t for t in matches if t.state == TargetState.RUNNING]
        if running:
            return running[0]
    return matches[0]


def require_service(identifier: str, service_name: str) -> None:
    """服务级操作（扩缩容、回滚）只接受本服务的名称。"""
    if identifier.strip() != service_name:
        raise TargetNotFoundError(f"Unknown service: {identifier} (managing {service_name})")
