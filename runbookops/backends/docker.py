"""
Docker 后端适配器。

服务名按容器名子串匹配；没有声明式副本数，扩缩容通过启停已有容器完成。
环境变量变更需要用合并后的配置重建容器。
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import docker
import docker.errors
import requests

from runbookops.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    TargetNotFoundError,
)
from runbookops.models import TargetState
from .base import (
    BackendCapabilities,
    OrchestrationBackend,
    ResourceSnapshot,
    TargetDescriptor,
    TargetSpecPatch,
)

logger = logging.getLogger(__name__)

# docker 状态 → 目标状态
STATUS_MAP = {
    "running": TargetState.RUNNING,
    "paused": TargetState.PAUSED,
    "restarting": TargetState.RESTARTING,
    "exited": TargetState.EXITED,
    "dead": TargetState.EXITED,
    "created": TargetState.STOPPED,
    "removing": TargetState.TERMINATING,
}

STOP_TIMEOUT_SECONDS = 10


def env_list_to_dict(env: Optional[list[str]]) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in env or []:
        key, _, value = item.partition("=")
        if key:
            result[key] = value
    return result


def port_bindings_to_ports(bindings: Optional[dict]) -> dict[str, Any]:
    """把 HostConfig.PortBindings 转成 containers.run 的 ports 参数。"""
    ports: dict[str, Any] = {}
    for container_port, host_bindings in (bindings or {}).items():
        if not host_bindings:
            ports[container_port] = None
            continue
        mapped = []
        for b in host_bindings:
            host_port = int(b["HostPort"]) if b.get("HostPort") else None
            host_ip = b.get("HostIp")
            mapped.append((host_ip, host_port) if host_ip else host_port)
        ports[container_port] = mapped if len(mapped) > 1 else mapped[0]
    return ports


def snapshot_from_stats(stats: dict, memory_limit: int) -> ResourceSnapshot:
    """把 container.stats(stream=False) 的结果映射为 ResourceSnapshot。"""
    cpu_stats = stats.get("cpu_stats") or {}
    precpu_stats = stats.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    precpu_usage = precpu_stats.get("cpu_usage") or {}

    online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1

    memory_stats = stats.get("memory_stats") or {}
    network_total = 0
    for iface in (stats.get("networks") or {}).values():
        network_total += int(iface.get("rx_bytes", 0)) + int(iface.get("tx_bytes", 0))

    return ResourceSnapshot(
        cpu_total_usage=int(cpu_usage.get("total_usage", 0)),
        precpu_total_usage=int(precpu_usage.get("total_usage", 0)),
        system_cpu_usage=int(cpu_stats.get("system_cpu_usage", 0)),
        presystem_cpu_usage=int(precpu_stats.get("system_cpu_usage", 0)),
        online_cpus=int(online_cpus),
        memory_usage_bytes=int(memory_stats.get("usage", 0)),
        memory_limit_bytes=memory_limit,
        network_bytes_total=network_total,
    )


class DockerBackend(OrchestrationBackend):
    """基于 docker SDK 的单机后端。"""

    kind = "docker"
    capabilities = BackendCapabilities(
        declarative_scaling=False,
        revision_history=False,
        in_place_restart=True,
        resource_snapshots=True,
    )

    def __init__(self, service_name: str, client: Optional[docker.DockerClient] = None,
                 base_url: str = "") -> None:
        super().__init__(service_name=service_name)
        if client is None:
            client = docker.DockerClient(base_url=base_url) if base_url else docker.from_env()
        self.client = client

    async def _call(self, fn, *args, **kwargs):
        try:
            return await self._run(fn, *args, **kwargs)
        except docker.errors.NotFound as e:
            raise TargetNotFoundError(f"Docker object not found: {e.explanation or e}") from e
        except docker.errors.APIError as e:
            raise BackendError(f"Docker API error: {e.explanation or e}") from e
        except requests.exceptions.ConnectionError as e:
            raise BackendUnavailableError(f"Docker daemon unreachable: {e}") from e
        except docker.errors.DockerException as e:
            raise BackendUnavailableError(f"Docker unavailable: {e}") from e

    def ping(self) -> bool:
        return bool(self.client.ping())

    def _descriptor(self, container: Any) -> TargetDescriptor:
        attrs = container.attrs or {}
        host_config = attrs.get("HostConfig") or {}
        nano_cpus = host_config.get("NanoCpus") or 0
        memory = host_config.get("Memory") or 0
        image = (attrs.get("Config") or {}).get("Image", "")
        return TargetDescriptor(
            id=container.id,
            name=container.name,
            state=STATUS_MAP.get(container.status, TargetState.STOPPED),
            image=image,
            cpu_limit=f"{nano_cpus // 1_000_000}m" if nano_cpus else None,
            memory_limit=str(memory) if memory else None,
            labels=container.labels or {},
        )

    async def _matching_containers(self) -> list[Any]:
        containers = await self._call(self.client.containers.list, all=True)
        return [c for c in containers if self.service_name in c.name]

    async def _get_container(self, target_id: str) -> Any:
        try:
            return await self._call(self.client.containers.get, target_id)
        except TargetNotFoundError:
            # 服务名等非精确标识回退到第一个匹配的容器
            for container in await self._matching_containers():
                if target_id in container.name or target_id == container.id:
                    return container
            raise

    async def list_targets(self) -> list[TargetDescriptor]:
        return [self._descriptor(c) for c in await self._matching_containers()]

    async def read_logs(self, target_id: str, max_lines: int) -> str:
        container = await self._get_container(target_id)
        raw = await self._call(container.logs, tail=max_lines, timestamps=True)
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw or ""

    async def restart_target(self, target_id: str) -> None:
        container = await self._get_container(target_id)
        await self._call(container.restart, timeout=STOP_TIMEOUT_SECONDS)
        logger.info("Restarted container %s", container.name)

    async def start_target(self, target_id: str) -> None:
        container = await self._get_container(target_id)
        await self._call(container.start)
        logger.info("Started container %s", container.name)

    async def stop_target(self, target_id: str) -> None:
        container = await self._get_container(target_id)
        await self._call(container.stop, timeout=STOP_TIMEOUT_SECONDS)
        logger.info("Stopped container %s", container.name)

    async def read_replicas(self, service_name: str) -> int:
        targets = await self.list_targets()
        return sum(1 for t in targets if t.state == TargetState.RUNNING)

    async def patch_target_spec(self, name: str, patch: TargetSpecPatch) -> None:
        if patch.replicas is not None:
            raise BackendError("docker backend does not support declarative replica counts")
        if patch.image is None and patch.env is None:
            return
        container = await self._get_container(name)
        await self._recreate(container, patch)

    async def _recreate(self, container: Any, patch: TargetSpecPatch) -> None:
        """用新的镜像/环境变量重建容器，其余运行参数保持不变。"""
        attrs = container.attrs or {}
        config = attrs.get("Config") or {}
        host_config = attrs.get("HostConfig") or {}

        env = patch.env if patch.env is not None else env_list_to_dict(config.get("Env"))
        run_kwargs: dict[str, Any] = {
            "image": patch.image or config.get("Image"),
            "name": container.name,
            "environment": [f"{k}={v}" for k, v in env.items()],
            "labels": config.get("Labels") or {},
            "detach": True,
        }
        if host_config.get("NetworkMode"):
            run_kwargs["network_mode"] = host_config["NetworkMode"]
        if host_config.get("PortBindings"):
            run_kwargs["ports"] = port_bindings_to_ports(host_config["PortBindings"])
        if host_config.get("Binds"):
            run_kwargs["volumes"] = host_config["Binds"]
        if host_config.get("RestartPolicy"):
            run_kwargs["restart_policy"] = host_config["RestartPolicy"]

        logger.info("Recreating container %s (image=%s, env vars=%s)",
                    container.name, run_kwargs["image"], sorted(env))
        await self._call(container.stop, timeout=STOP_TIMEOUT_SECONDS)
        await self._call(container.remove)
        await self._call(self.client.containers.run, **run_kwargs)

    async def read_env(self, target_id: str) -> dict[str, str]:
        container = await self._get_container(target_id)
        return env_list_to_dict((container.attrs.get("Config") or {}).get("Env"))

    async def current_image(self, service_name: str) -> str:
        containers = await self._matching_containers()
        if not containers:
            raise TargetNotFoundError(f"No containers found for service: {service_name}")
        return (containers[0].attrs.get("Config") or {}).get("Image", "")

    async def read_resource_snapshot(self, target_id: str) -> Optional[ResourceSnapshot]:
        container = await self._get_container(target_id)
        stats = await self._call(container.stats, stream=False)
        memory_limit = (container.attrs.get("HostConfig") or {}).get("Memory") or 0
        return snapshot_from_stats(stats, int(memory_limit))
