"""Kubernetes 后端测试：mock CoreV1Api / AppsV1Api，使用真实的模型对象。"""
from unittest.mock import MagicMock

import pytest
import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from runbookops.backends.base import TargetSpecPatch
from runbookops.backends.kubernetes import (
    REVISION_ANNOTATION,
    RESTARTED_AT_ANNOTATION,
    KubernetesBackend,
    resolve_pod_state,
)
from runbookops.core.exceptions import BackendError, BackendUnavailableError, TargetNotFoundError
from runbookops.models import TargetState


def _container_status(**state) -> client.V1ContainerStatus:
    return client.V1ContainerStatus(
        name="demo-app",
        image="demo-app:v2",
        image_id="sha256:abc",
        ready=bool(state.get("running")),
        restart_count=0,
        state=client.V1ContainerState(**state),
    )


def _pod(name, phase="Running", status=None, deleting=False, limits=None) -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            labels={"app": "demo-app"},
            deletion_timestamp="2024-01-01T00:00:00Z" if deleting else None,
        ),
        spec=client.V1PodSpec(containers=[
            client.V1Container(
                name="demo-app",
                image="demo-app:v2",
                resources=client.V1ResourceRequirements(limits=limits),
            ),
        ]),
        status=client.V1PodStatus(
            phase=phase,
            container_statuses=[status] if status is not None else None,
        ),
    )


def _template(env=None, image="demo-app:v2") -> client.V1PodTemplateSpec:
    return client.V1PodTemplateSpec(
        spec=client.V1PodSpec(containers=[client.V1Container(name="demo-app", image=image, env=env)]),
    )


def _deployment(replicas=2, env=None) -> client.V1Deployment:
    return client.V1Deployment(
        metadata=client.V1ObjectMeta(name="demo-app"),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(match_labels={"app": "demo-app"}),
            template=_template(env=env),
        ),
    )


def _replica_set(name, revision, image, owner="demo-app") -> client.V1ReplicaSet:
    return client.V1ReplicaSet(
        metadata=client.V1ObjectMeta(
            name=name,
            annotations={REVISION_ANNOTATION: str(revision)},
            owner_references=[
                client.V1OwnerReference(api_version="apps/v1", kind="Deployment", name=owner, uid="u-1"),
            ],
        ),
        spec=client.V1ReplicaSetSpec(
            selector=client.V1LabelSelector(match_labels={"app": "demo-app"}),
            template=_template(image=image),
        ),
    )


@pytest.fixture
def core():
    return MagicMock()


@pytest.fixture
def apps():
    return MagicMock()


@pytest.fixture
def backend(core, apps):
    return KubernetesBackend("default", "app=demo-app", "demo-app", core_api=core, apps_api=apps)


class TestPodState:
    def test_running_container(self):
        pod = _pod("p", status=_container_status(running=client.V1ContainerStateRunning()))
        assert resolve_pod_state(pod) == TargetState.RUNNING

    def test_crash_loop(self):
        waiting = client.V1ContainerStateWaiting(reason="CrashLoopBackOff")
        pod = _pod("p", phase="Running", status=_container_status(waiting=waiting))
        assert resolve_pod_state(pod) == TargetState.RESTARTING

    def test_terminated(self):
        terminated = client.V1ContainerStateTerminated(exit_code=137, reason="OOMKilled")
        pod = _pod("p", phase="Running", status=_container_status(terminated=terminated))
        assert resolve_pod_state(pod) == TargetState.EXITED

    def test_deleting(self):
        pod = _pod("p", status=_container_status(running=client.V1ContainerStateRunning()), deleting=True)
        assert resolve_pod_state(pod) == TargetState.TERMINATING

    @pytest.mark.parametrize("phase,expected", [
        ("Running", TargetState.RUNNING),
        ("Pending", TargetState.RESTARTING),
        ("Failed", TargetState.EXITED),
        ("Succeeded", TargetState.STOPPED),
    ])
    def test_phase_fallback(self, phase, expected):
        assert resolve_pod_state(_pod("p", phase=phase)) == expected


@pytest.mark.asyncio
async def test_list_targets(backend, core):
    core.list_namespaced_pod.return_value = client.V1PodList(items=[
        _pod("demo-app-abc12", limits={"cpu": "500m", "memory": "256Mi"}),
        _pod("demo-app-def34", phase="Pending"),
    ])

    targets = await backend.list_targets()

    core.list_namespaced_pod.assert_called_once_with(namespace="default", label_selector="app=demo-app")
    assert [t.id for t in targets] == ["demo-app-abc12", "demo-app-def34"]
    assert targets[0].name == "demo-app"
    assert targets[0].cpu_limit == "500m"
    assert targets[0].memory_limit == "256Mi"
    assert targets[1].state == TargetState.RESTARTING


@pytest.mark.asyncio
async def test_read_logs(backend, core):
    core.read_namespaced_pod_log.return_value = "2024-01-01T00:00:00Z hello"
    assert await backend.read_logs("demo-app-abc12", 50) == "2024-01-01T00:00:00Z hello"
    core.read_namespaced_pod_log.assert_called_once_with(
        name="demo-app-abc12", namespace="default", tail_lines=50, timestamps=True,
    )


class TestDelete:
    @pytest.mark.asyncio
    async def test_single_pod_uses_field_selector(self, backend, core):
        await backend.delete_targets(["demo-app-abc12"])
        core.delete_collection_namespaced_pod.assert_called_once_with(
            namespace="default", label_selector="app=demo-app", field_selector="metadata.name=demo-app-abc12",
        )

    @pytest.mark.asyncio
    async def test_whole_service(self, backend, core):
        await backend.delete_targets(None)
        core.delete_collection_namespaced_pod.assert_called_once_with(
            namespace="default", label_selector="app=demo-app",
        )

    @pytest.mark.asyncio
    async def test_several_pods(self, backend, core):
        await backend.delete_targets(["a", "b"])
        assert core.delete_namespaced_pod.call_count == 2
        core.delete_collection_namespaced_pod.assert_not_called()


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_not_found(self, backend, apps):
        apps.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")
        with pytest.raises(TargetNotFoundError):
            await backend.read_replicas("demo-app")

    @pytest.mark.asyncio
    async def test_forbidden(self, backend, core):
        core.list_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(BackendError, match="403"):
            await backend.list_targets()

    @pytest.mark.asyncio
    async def test_unreachable(self, backend, core):
        core.list_namespaced_pod.side_effect = urllib3.exceptions.ProtocolError("connection reset")
        with pytest.raises(BackendUnavailableError):
            await backend.list_targets()


@pytest.mark.asyncio
async def test_read_replicas(backend, apps):
    apps.read_namespaced_deployment.return_value = _deployment(replicas=3)
    assert await backend.read_replicas("demo-app") == 3


@pytest.mark.asyncio
async def test_patch_replicas_uses_scale_subresource(backend, apps):
    await backend.patch_target_spec("demo-app", TargetSpecPatch(replicas=4))

    apps.patch_namespaced_deployment_scale.assert_called_once_with(
        name="demo-app", namespace="default", body={"spec": {"replicas": 4}},
    )
    apps.patch_namespaced_deployment.assert_not_called()


@pytest.mark.asyncio
async def test_patch_env_and_image(backend, apps):
    """Pod 名也会解析到所属的 Deployment。"""
    apps.read_namespaced_deployment.return_value = _deployment()

    await backend.patch_target_spec("demo-app-abc12", TargetSpecPatch(env={"LOG_LEVEL": "debug"}, image="demo-app:v1"))

    body = apps.patch_namespaced_deployment.call_args.kwargs["body"]
    assert apps.patch_namespaced_deployment.call_args.kwargs["name"] == "demo-app"
    assert body["spec"]["template"]["spec"]["containers"] == [
        {"name": "demo-app", "image": "demo-app:v1", "env": [{"name": "LOG_LEVEL", "value": "debug"}]},
    ]


@pytest.mark.asyncio
async def test_read_env_skips_value_from(backend, apps):
    secret_ref = client.V1EnvVarSource(
        secret_key_ref=client.V1SecretKeySelector(name="db", key="password"),
    )
    apps.read_namespaced_deployment.return_value = _deployment(env=[
        client.V1EnvVar(name="LOG_LEVEL", value="info"),
        client.V1EnvVar(name="DB_PASSWORD", value_from=secret_ref),
        client.V1EnvVar(name="EMPTY"),
    ])

    assert await backend.read_env("demo-app") == {"LOG_LEVEL": "info", "EMPTY": ""}


@pytest.mark.asyncio
async def test_rollout_restart_sets_annotation(backend, apps):
    await backend.rollout_restart("demo-app")
    body = apps.patch_namespaced_deployment.call_args.kwargs["body"]
    assert RESTARTED_AT_ANNOTATION in body["spec"]["template"]["metadata"]["annotations"]


@pytest.mark.asyncio
async def test_current_image(backend, apps):
    apps.read_namespaced_deployment.return_value = _deployment()
    assert await backend.current_image("demo-app") == "demo-app:v2"


@pytest.mark.asyncio
async def test_revision_history_newest_first(backend, apps):
    apps.list_namespaced_replica_set.return_value = client.V1ReplicaSetList(items=[
        _replica_set("demo-app-1", 1, "demo-app:v1"),
        _replica_set("demo-app-3", 3, "demo-app:v2"),
        _replica_set("other-9", 9, "other:v9", owner="other"),
        _replica_set("demo-app-2", 2, "demo-app:v1.5"),
    ])

    history = await backend.list_revision_history("demo-app")

    assert [(r.revision, r.image) for r in history] == [
        (3, "demo-app:v2"), (2, "demo-app:v1.5"), (1, "demo-app:v1"),
    ]


def test_capabilities(backend):
    info = backend.describe()
    assert info["kind"] == "kubernetes"
    assert info["capabilities"]["declarative_scaling"] is True
    assert info["capabilities"]["in_place_restart"] is False
