"""
Kubernetes 后端适配器。

作用范围：一个命名空间内、一个标签选择器下的 Pod，以及它们所属的单个 Deployment。
Pod 重启采用删除后由 ReplicaSet 重建的方式；环境变量与镜像修改走 Deployment 模板补丁。
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from runbookops.core.exceptions import (
    BackendError,
    BackendUnavailableError,
    TargetNotFoundError,
)
from runbookops.models import TargetState
from .base import (
    BackendCapabilities,
    OrchestrationBackend,
    Revision,
    TargetDescriptor,
    TargetSpecPatch,
)

logger = logging.getLogger(__name__)

REVISION_ANNOTATION = "deployment.kubernetes.io/revision"
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


def load_kube_config() -> None:
    """优先使用集群内 ServiceAccount，失败时回退到本地 kubeconfig。"""
    try:
        config.load_incluster_config()
        logger.info("Initialized Kubernetes client from in-cluster service account")
    except config.ConfigException as e:
        logger.warning("In-cluster Kubernetes config unavailable (%s), falling back to kubeconfig", e)
        config.load_kube_config()


def primary_container(pod: Any) -> Any:
    containers = (pod.spec.containers if pod.spec else None) or []
    return containers[0] if containers else None


def resolve_pod_state(pod: Any) -> TargetState:
    """由主容器状态与 Pod phase 推断目标状态。"""
    if pod.metadata is not None and pod.metadata.deletion_timestamp:
        return TargetState.TERMINATING

    container = primary_container(pod)
    container_name = container.name if container else None
    statuses = (pod.status.container_statuses if pod.status else None) or []
    status = next((s for s in statuses if s.name == container_name), None)

    if status is not None and status.state is not None:
        if status.state.running:
            return TargetState.RUNNING
        waiting = status.state.waiting
        if waiting and waiting.reason and "crashloop" in waiting.reason.lower():
            return TargetState.RESTARTING
        if status.state.terminated:
            return TargetState.EXITED

    phase = ((pod.status.phase if pod.status else None) or "").lower()
    if phase == "running":
        return TargetState.RUNNING
    if phase in ("pending", "unknown"):
        return TargetState.RESTARTING
    if phase == "failed":
        return TargetState.EXITED
    return TargetState.STOPPED


class KubernetesBackend(OrchestrationBackend):
    """基于官方 kubernetes 客户端的后端实现。"""

    kind = "kubernetes"
    capabilities = BackendCapabilities(
        declarative_scaling=True,
        revision_history=True,
        in_place_restart=False,
        resource_snapshots=False,
    )

    def __init__(
        self,
        namespace: str,
        label_selector: str,
        deployment_name: str,
        core_api: Optional[client.CoreV1Api] = None,
        apps_api: Optional[client.AppsV1Api] = None,
    ) -> None:
        super().__init__(service_name=deployment_name)
        self.namespace = namespace
        self.label_selector = label_selector
        self.deployment_name = deployment_name
        self.core = core_api or client.CoreV1Api()
        self.apps = apps_api or client.AppsV1Api()

    async def _call(self, fn, *args, **kwargs):
        try:
            return await self._run(fn, *args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise TargetNotFoundError(
                    f"Kubernetes resource not found: {e.reason}", detail=str(e.body)
                ) from e
            raise BackendError(
                f"Kubernetes API error {e.status}: {e.reason}", detail=str(e.body)
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise BackendUnavailableError(f"Kubernetes API unreachable: {e}") from e

    def _descriptor(self, pod: Any) -> TargetDescriptor:
        container = primary_container(pod)
        limits = {}
        if container is not None and container.resources is not None:
            limits = container.resources.limits or {}
        return TargetDescriptor(
            id=pod.metadata.name,
            name=container.name if container else pod.metadata.name,
            state=resolve_pod_state(pod),
            image=container.image if container else "",
            cpu_limit=limits.get("cpu"),
            memory_limit=limits.get("memory"),
            labels=pod.metadata.labels or {},
        )

    async def list_targets(self) -> list[TargetDescriptor]:
        pods = await self._call(
            self.core.list_namespaced_pod,
            namespace=self.namespace,
            label_selector=self.label_selector,
        )
        return [self._descriptor(p) for p in pods.items if p.metadata and p.metadata.name]

    async def read_logs(self, target_id: str, max_lines: int) -> str:
        logs = await self._call(
            self.core.read_namespaced_pod_log,
            name=target_id,
            namespace=self.namespace,
            tail_lines=max_lines,
            timestamps=True,
        )
        return logs or ""

    async def delete_targets(self, target_ids: Optional[list[str]] = None) -> None:
        kwargs: dict[str, Any] = {
            "namespace": self.namespace,
            "label_selector": self.label_selector,
        }
        if target_ids and len(target_ids) == 1:
            kwargs["field_selector"] = f"metadata.name={target_ids[0]}"
            await self._call(self.core.delete_collection_namespaced_pod, **kwargs)
        elif target_ids:
            for target_id in target_ids:
                await self._call(
                    self.core.delete_namespaced_pod, name=target_id, namespace=self.namespace
                )
        else:
            await self._call(self.core.delete_collection_namespaced_pod, **kwargs)
        logger.info("Deleted pods %s (selector=%s)", target_ids or "<all>", self.label_selector)

    async def _read_deployment(self) -> Any:
        return await self._call(
            self.apps.read_namespaced_deployment,
            name=self.deployment_name,
            namespace=self.namespace,
        )

    async def read_replicas(self, service_name: str) -> int:
        deployment = await self._read_deployment()
        replicas = deployment.spec.replicas
        return 1 if replicas is None else int(replicas)

    async def patch_target_spec(self, name: str, patch: TargetSpecPatch) -> None:
        # Pod 名与服务名都归到同一个 Deployment
        if patch.replicas is not None:
            await self._call(
                self.apps.patch_namespaced_deployment_scale,
                name=self.deployment_name,
                namespace=self.namespace,
                body={"spec": {"replicas": patch.replicas}},
            )
            logger.info("Patched %s replicas to %d", self.deployment_name, patch.replicas)

        if patch.image is None and patch.env is None:
            return

        deployment = await self._read_deployment()
        container_patch: dict[str, Any] = {"name": primary_container(deployment.spec.template).name}
        if patch.image is not None:
            container_patch["image"] = patch.image
        if patch.env is not None:
            container_patch["env"] = [{"name": k, "value": v} for k, v in patch.env.items()]

        body = {"spec": {"template": {"spec": {"containers": [container_patch]}}}}
        await self._call(
            self.apps.patch_namespaced_deployment,
            name=self.deployment_name,
            namespace=self.namespace,
            body=body,
        )
        logger.info("Patched deployment %s template (fields=%s)",
                    self.deployment_name, sorted(k for k in container_patch if k != "name"))

    async def read_env(self, target_id: str) -> dict[str, str]:
        deployment = await self._read_deployment()
        container = primary_container(deployment.spec.template)
        env: dict[str, str] = {}
        for var in (container.env if container else None) or []:
            # valueFrom 引用的变量不参与合并
            if var.value_from is None:
                env[var.name] = var.value or ""
        return env

    async def rollout_restart(self, target_id: str) -> None:
        body = {
            "spec": {
                "template": {
                    "metadata": {
                        "annotations": {
                            RESTARTED_AT_ANNOTATION: datetime.now(timezone.utc).isoformat()
                        }
                    }
                }
            }
        }
        await self._call(
            self.apps.patch_namespaced_deployment,
            name=self.deployment_name,
            namespace=self.namespace,
            body=body,
        )
        logger.info("Triggered rollout restart of deployment %s", self.deployment_name)

    async def current_image(self, service_name: str) -> str:
        deployment = await self._read_deployment()
        container = primary_container(deployment.spec.template)
        return container.image if container else ""

    async def list_revision_history(self, service_name: str) -> list[Revision]:
        replica_sets = await self._call(
            self.apps.list_namespaced_replica_set,
            namespace=self.namespace,
            label_selector=self.label_selector,
        )
        history: list[Revision] = []
        for rs in replica_sets.items:
            owners = rs.metadata.owner_references or []
            if not any(o.kind == "Deployment" and o.name == self.deployment_name for o in owners):
                continue
            container = primary_container(rs.spec.template)
            if container is None or not container.image:
                continue
            annotations = rs.metadata.annotations or {}
            try:
                revision = int(annotations.get(REVISION_ANNOTATION, "0"))
            except ValueError:
                revision = 0
            history.append(Revision(revision=revision, image=container.image))
        history.sort(key=lambda r: r.revision, reverse=True)
        return history
