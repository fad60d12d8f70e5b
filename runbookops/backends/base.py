"""
编排后端抽象接口。

核心逻辑只依赖这里定义的能力集合，不直接接触 kubernetes / docker 客户端。
具体适配器在启动时选定一次（见 build_backend），之后不再探测。
"""
from __future__ import annotations

import abc
import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from runbookops.core.exceptions import BackendError, TargetNotFoundError
from runbookops.models import TargetState


class TargetDescriptor(BaseModel):
    """单个可修复目标（容器或 Pod）的快照。"""
    id: str
    name: str  # 主容器名
    state: TargetState
    image: str = ""
    cpu_limit: Optional[str] = None  # 资源数量字符串，如 "500m"
    memory_limit: Optional[str] = None  # 资源数量字符串，如 "256Mi"
    labels: dict[str, str] = Field(default_factory=dict)


class Revision(BaseModel):
    revision: int
    image: str


class TargetSpecPatch(BaseModel):
    """对部署规格的部分修改，未设置的字段保持不变。"""
    image: Optional[str] = None
    env: Optional[dict[str, str]] = None
    replicas: Optional[int] = None


@dataclass(frozen=True)
class BackendCapabilities:
    declarative_scaling: bool = False
    revision_history: bool = False
    in_place_restart: bool = False
    resource_snapshots: bool = False


@dataclass
class ResourceSnapshot:
    """容器运行时的一次资源统计（前后两次 CPU 计数）。"""
    cpu_total_usage: int = 0
    precpu_total_usage: int = 0
    system_cpu_usage: int = 0
    presystem_cpu_usage: int = 0
    online_cpus: int = 1
    memory_usage_bytes: int = 0
    memory_limit_bytes: int = 0
    network_bytes_total: int = 0


class OrchestrationBackend(abc.ABC):
    """容器编排后端的能力集合。

    所有方法都是协程；阻塞式客户端库在默认线程池中执行。
    """

    kind: str = "abstract"
    capabilities: BackendCapabilities = BackendCapabilities()

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    @abc.abstractmethod
    async def list_targets(self) -> list[TargetDescriptor]:
        """列出属于本服务的所有目标（包括已停止的）。"""

    async def read_target(self, target_id: str) -> TargetDescriptor:
        for target in await self.list_targets():
            if target.id == target_id:
                return target
        raise TargetNotFoundError(f"Target not found: {target_id}")

    @abc.abstractmethod
    async def read_logs(self, target_id: str, max_lines: int) -> str:
        """读取最近 max_lines 行原始日志（带时间戳）。"""

    async def delete_targets(self, target_ids: Optional[list[str]] = None) -> None:
        """删除目标，由控制器重建。None 表示整个服务。"""
        raise BackendError(f"{self.kind} backend does not support delete-and-recreate")

    async def restart_target(self, target_id: str) -> None:
        """原地重启单个目标。"""
        raise BackendError(f"{self.kind} backend does not support in-place restart")

    async def start_target(self, target_id: str) -> None:
        raise BackendError(f"{self.kind} backend does not support starting instances")

    async def stop_target(self, target_id: str) -> None:
        raise BackendError(f"{self.kind} backend does not support stopping instances")

    @abc.abstractmethod
    async def read_replicas(self, service_name: str) -> int:
        """当前副本数。"""

    @abc.abstractmethod
    async def patch_target_spec(self, name: str, patch: TargetSpecPatch) -> None:
        """对部署规格做部分修改（镜像、环境变量、副本数）。"""

    @abc.abstractmethod
    async def read_env(self, target_id: str) -> dict[str, str]:
        """目标当前生效的环境变量。"""

    async def rollout_restart(self, target_id: str) -> None:
        """在配置未变化时强制重建/重启目标。"""
        await self.restart_target(target_id)

    @abc.abstractmethod
    async def current_image(self, service_name: str) -> str:
        """当前部署的镜像。"""

    async def list_revision_history(self, service_name: str) -> list[Revision]:
        """历史版本，按 revision 从新到旧。"""
        return []

    async def read_resource_snapshot(self, target_id: str) -> Optional[ResourceSnapshot]:
        return None

    def describe(self) -> dict[str, Any]:
        caps = self.capabilities
        return {
            "kind": self.kind,
            "service_name": self.service_name,
            "capabilities": {
                "declarative_scaling": caps.declarative_scaling,
                "revision_history": caps.revision_history,
                "in_place_restart": caps.in_place_restart,
                "resource_snapshots": caps.resource_snapshots,
            },
        }
