"""
RunbookOps 测试基础配置

提供内存中的假后端、可控时钟和安全校验器等通用 fixture。
所有测试不依赖真实的 Kubernetes 集群或 Docker 守护进程。
"""
from typing import Optional

import pytest

from runbookops.backends.base import (
    BackendCapabilities,
    OrchestrationBackend,
    ResourceSnapshot,
    Revision,
    TargetDescriptor,
    TargetSpecPatch,
)
from runbookops.models import TargetState
from runbookops.remediation.safety import SafetyValidator

K8S_CAPABILITIES = BackendCapabilities(declarative_scaling=True, revision_history=True)
DOCKER_CAPABILITIES = BackendCapabilities(in_place_restart=True, resource_snapshots=True)


def _target(target_id: str, state: str = "running", **kwargs) -> TargetDescriptor:
    defaults = dict(
        id=target_id,
        name="demo-app",
        state=TargetState(state),
        image="demo-app:v2",
    )
    defaults.update(kwargs)
    return TargetDescriptor(**defaults)


class FakeClock:
    """可手动推进的 epoch 秒时钟。"""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend(OrchestrationBackend):
    """内存后端：记录所有写操作，可按方法注入失败。"""

    kind = "fake"

    def __init__(self, targets=None, capabilities: Optional[BackendCapabilities] = None,
                 service_name: str = "demo-app") -> None:
        super().__init__(service_name=service_name)
        self.capabilities = capabilities or K8S_CAPABILITIES
        self.targets: list[TargetDescriptor] = list(targets or [])
        self.target_sequence: list[list[TargetDescriptor]] = []
        self.logs: dict[str, str] = {}
        self.replicas = sum(1 for t in self.targets if t.state == TargetState.RUNNING)
        self.env: dict[str, str] = {}
        self.image = "demo-app:v2"
        self.revisions: list[Revision] = []
        self.snapshot: Optional[ResourceSnapshot] = None
        self.mutations: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.list_calls = 0

    def _maybe_fail(self, op: str, target_id: Optional[str] = None) -> None:
        err = self.failures.get(op)
        if err is None and target_id is not None:
            err = self.failures.get(f"{op}:{target_id}")
        if err is not None:
            raise err

    def _set_state(self, target_id: str, state: TargetState) -> None:
        self.targets = [t.model_copy(update={"state": state}) if t.id == target_id else t for t in self.targets]

    async def list_targets(self):
        self.list_calls += 1
        self._maybe_fail("list_targets")
        if self.target_sequence:
            self.targets = self.target_sequence.pop(0)
        return list(self.targets)

    async def read_logs(self, target_id, max_lines):
        self._maybe_fail("read_logs", target_id)
        lines = self.logs.get(target_id, "").splitlines()
        return "\n".join(lines[-max_lines:])

    async def delete_targets(self, target_ids=None):
        self._maybe_fail("delete_targets")
        self.mutations.append(("delete_targets", target_ids))

    async def restart_target(self, target_id):
        self._maybe_fail("restart_target", target_id)
        self.mutations.append(("restart_target", target_id))

    async def start_target(self, target_id):
        self._maybe_fail("start_target", target_id)
        self.mutations.append(("start_target", target_id))
        self._set_state(target_id, TargetState.RUNNING)

    async def stop_target(self, target_id):
        self._maybe_fail("stop_target", target_id)
        self.mutations.append(("stop_target", target_id))
        self._set_state(target_id, TargetState.EXITED)

    async def read_replicas(self, service_name):
        self._maybe_fail("read_replicas")
        return self.replicas

    async def patch_target_spec(self, name, patch: TargetSpecPatch):
        self._maybe_fail("patch_target_spec")
        self.mutations.append(("patch_target_spec", name, patch))
        if patch.replicas is not None:
            self.replicas = patch.replicas
        if patch.env is not None:
            self.env = dict(patch.env)
        if patch.image is not None:
            self.image = patch.image

    async def read_env(self, target_id):
        self._maybe_fail("read_env")
        return dict(self.env)

    async def rollout_restart(self, target_id):
        self._maybe_fail("rollout_restart")
        self.mutations.append(("rollout_restart", target_id))

    async def current_image(self, service_name):
        self._maybe_fail("current_image")
        return self.image

    async def list_revision_history(self, service_name):
        return list(self.revisions)

    async def read_resource_snapshot(self, target_id):
        return self.snapshot


@pytest.fixture
def make_target():
    return _target


@pytest.fixture
def fake_backend():
    """类 Kubernetes 后端：声明式副本数 + 版本历史，两个运行中的 Pod。"""
    return FakeBackend(
        targets=[_target("demo-app-7d9f-abc12"), _target("demo-app-7d9f-def34")],
        capabilities=K8S_CAPABILITIES,
    )


@pytest.fixture
def docker_backend():
    """类 Docker 后端：原地重启 + 资源快照，一个运行、一个已停止的容器。"""
    return FakeBackend(
        targets=[_target("demo-app-1"), _target("demo-app-2", state="exited")],
        capabilities=DOCKER_CAPABILITIES,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validator(clock):
    return SafetyValidator(clock=clock)


@pytest.fixture
def backend_factory():
    return FakeBackend
