"""
编排后端。启动时探测一次，选定后整个进程只使用这一个适配器。
"""
import logging

from runbookops.core.config import Settings
from runbookops.core.exceptions import BackendUnavailableError

from .base import (
    BackendCapabilities,
    OrchestrationBackend,
    ResourceSnapshot,
    Revision,
    TargetDescriptor,
    TargetSpecPatch,
)

logger = logging.getLogger(__name__)


def _build_kubernetes(settings: Settings) -> OrchestrationBackend:
    from kubernetes import client

    from .kubernetes import KubernetesBackend, load_kube_config

    load_kube_config()
    client.VersionApi().get_code()
    return KubernetesBackend(
        namespace=settings.k8s_namespace,
        label_selector=settings.target_label_selector,
        deployment_name=settings.service_name,
    )


def _build_docker(settings: Settings) -> OrchestrationBackend:
    from .docker import DockerBackend

    backend = DockerBackend(service_name=settings.service_name, base_url=settings.docker_base_url)
    backend.ping()
    return backend


def build_backend(settings: Settings) -> OrchestrationBackend:
    """按配置选择后端；auto 模式下先试 Kubernetes，再试 Docker。"""
    builders = {"kubernetes": [_build_kubernetes], "docker": [_build_docker]}
    candidates = builders.get(settings.backend, [_build_kubernetes, _build_docker])

    errors = []
    for build in candidates:
        try:
            backend = build(settings)
        except Exception as e:  # 任一客户端库的配置或连接错误都视为不可用
            logger.warning("Backend probe %s failed: %s", build.__name__, e)
            errors.append(str(e))
            continue
        logger.info("Using %s backend for service %s", backend.kind, settings.service_name)
        return backend

    raise BackendUnavailableError(
        f"No orchestration backend available (mode={settings.backend})",
        detail="; ".join(errors),
    )


__all__ = [
    "BackendCapabilities",
    "OrchestrationBackend",
    "ResourceSnapshot",
    "Revision",
    "TargetDescriptor",
    "TargetSpecPatch",
    "build_backend",
]
