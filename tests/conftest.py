# ABOUTME: Pytest fixtures and configuration for crd-schema-sync tests
# ABOUTME: Provides sample CRDs, sources, kubeconfig writers and isolated settings

import base64
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from crd_schema_sync import kubeconfig as kubeconfig_module
from crd_schema_sync.config import ClusterSource, SyncSettings, UrlSource

CLUSTER_SERVER = "https://127.0.0.1:6443"

KONG_GROUP = "configuration.konghq.com"

ISOLATED_VARIABLES = (
    "GITHUB_TOKEN",
    "GITHUB_OUTPUT",
    "KUBECONFIG",
    "RUNNER_DEBUG",
    "ACTIONS_STEP_DEBUG",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's environment and kubeconfig out of every test."""
    for name in list(os.environ):
        if name.startswith("CRD_SYNC_"):
            monkeypatch.delenv(name)
    for name in ISOLATED_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        kubeconfig_module, "DEFAULT_KUBECONFIG_PATH", str(tmp_path / "no-such-kubeconfig")
    )


def make_crd(
    kind: str = "KongConsumer",
    plural: str = "kongconsumers",
    group: str = KONG_GROUP,
    versions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a CustomResourceDefinition mapping."""
    if versions is None:
        versions = [
            {
                "name": "v1",
                "served": True,
                "storage": True,
                "schema": {
                    "openAPIV3Schema": {
                        "type": "object",
                        "properties": {
                            "username": {"type": "string"},
                            "credentials": {"type": "array", "items": {"type": "string"}},
                        },
                    }
                },
            }
        ]
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{plural}.{group}"},
        "spec": {
            "group": group,
            "names": {"kind": kind, "plural": plural},
            "scope": "Namespaced",
            "versions": versions,
        },
    }


@pytest.fixture
def sample_crd() -> dict[str, Any]:
    """A KongConsumer CRD with a single v1 schema."""
    return make_crd()


@pytest.fixture
def url_source() -> UrlSource:
    """URL source restricted to the Kong configuration group."""
    return UrlSource(
        id="kong",
        name="Kong",
        url="https://example.com/crds.yaml",
        group=KONG_GROUP,
    )


@pytest.fixture
def cluster_source() -> ClusterSource:
    """Cluster source using the kubeconfig's current context."""
    return ClusterSource(id="k8s-cluster", name="test-cluster")


@pytest.fixture
def kubeconfig_data() -> dict[str, Any]:
    """Minimal kubeconfig with one token-authenticated context."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": "test",
        "contexts": [{"name": "test", "context": {"cluster": "test-cluster", "user": "test-user"}}],
        "clusters": [
            {
                "name": "test-cluster",
                "cluster": {"server": f"{CLUSTER_SERVER}/", "insecure-skip-tls-verify": True},
            }
        ],
        "users": [{"name": "test-user", "user": {"token": "test-token"}}],
    }


@pytest.fixture
def write_kubeconfig(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Callable[[dict[str, Any]], Path]:
    """Write a kubeconfig mapping to disk and point KUBECONFIG at it."""

    def _write(data: dict[str, Any]) -> Path:
        path = tmp_path / "kubeconfig.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        monkeypatch.setenv("KUBECONFIG", str(path))
        return path

    return _write


@pytest.fixture
def kubeconfig_file(
    kubeconfig_data: dict[str, Any], write_kubeconfig: Callable[[dict[str, Any]], Path]
) -> Path:
    """The default kubeconfig written to disk."""
    return write_kubeconfig(kubeconfig_data)


@pytest.fixture
def b64() -> Callable[[str], str]:
    """Base64-encode text the way kubeconfig *-data fields are encoded."""
    return lambda text: base64.b64encode(text.encode()).decode()


@pytest.fixture
def schema_dir(tmp_path: Path) -> Path:
    """Output directory for schema files (not created)."""
    return tmp_path / "schemas"


@pytest.fixture
def settings(schema_dir: Path, url_source: UrlSource) -> SyncSettings:
    """Settings with one URL source, writing into schema_dir."""
    return SyncSettings(sources=[url_source], work_dir=schema_dir, target_repo="acme/schemas")


@pytest.fixture
def crd_factory() -> Callable[..., dict[str, Any]]:
    """Factory for CRD mappings with custom kind, group and versions."""
    return make_crd
