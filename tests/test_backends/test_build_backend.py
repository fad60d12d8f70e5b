"""后端选择测试。"""
from unittest.mock import MagicMock, patch

import pytest

from runbookops.backends import build_backend
from runbookops.core.config import Settings
from runbookops.core.exceptions import BackendUnavailableError


def _backend(kind):
    backend = MagicMock()
    backend.kind = kind
    return backend


def _returns(backend, calls):
    def build(settings):
        calls.append(backend.kind)
        return backend
    return build


def _fails(message, calls):
    def build(settings):
        calls.append(message)
        raise RuntimeError(message)
    return build


def test_auto_prefers_kubernetes():
    calls = []
    k8s = _backend("kubernetes")
    with patch("runbookops.backends._build_kubernetes", new=_returns(k8s, calls)), \
         patch("runbookops.backends._build_docker", new=_returns(_backend("docker"), calls)):
        assert build_backend(Settings(backend="auto")) is k8s
    assert calls == ["kubernetes"]


def test_auto_falls_back_to_docker():
    calls = []
    docker_backend = _backend("docker")
    with patch("runbookops.backends._build_kubernetes", new=_fails("no kubeconfig", calls)), \
         patch("runbookops.backends._build_docker", new=_returns(docker_backend, calls)):
        assert build_backend(Settings(backend="auto")) is docker_backend
    assert calls == ["no kubeconfig", "docker"]


def test_explicit_backend_does_not_probe_others():
    calls = []
    with patch("runbookops.backends._build_kubernetes", new=_returns(_backend("kubernetes"), calls)), \
         patch("runbookops.backends._build_docker", new=_returns(_backend("docker"), calls)):
        build_backend(Settings(backend="docker"))
    assert calls == ["docker"]


def test_no_backend_available():
    calls = []
    with patch("runbookops.backends._build_kubernetes", new=_fails("no kubeconfig", calls)), \
         patch("runbookops.backends._build_docker", new=_fails("socket missing", calls)):
        with pytest.raises(BackendUnavailableError) as exc:
            build_backend(Settings(backend="auto"))

    assert "mode=auto" in exc.value.message
    assert "no kubeconfig" in exc.value.detail
    assert "socket missing" in exc.value.detail
