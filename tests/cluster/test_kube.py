"""Tests for the Kubernetes API backed cluster."""

from pathlib import Path
from unittest.mock import MagicMock

from kubernetes import client
from kubernetes.client import ApiClient, ApiException
import pytest
from urllib3.exceptions import MaxRetryError, ReadTimeoutError

from config_sync.cluster.kube import KubernetesCluster
from config_sync.exceptions import ClusterException
from config_sync.manifest import ConfigSync, NamedResource

CONFIG_SYNC_DOC = {
    "apiVersion": "configs.example.io/v1alpha1",
    "kind": "ConfigSync",
    "metadata": {"name": "example", "namespace": "apps", "resourceVersion": "1"},
    "spec": {
        "source": {"configMapRef": {"name": "manifests"}},
        "targets": [{"namespace": "app", "name": "settings", "type": "ConfigMap"}],
    },
}


@pytest.fixture(name="kube")
def kube_fixture() -> KubernetesCluster:
    """Create a cluster with mocked API clients."""
    kube = KubernetesCluster(ApiClient(), request_timeout=5.0)
    kube._core = MagicMock()
    kube._custom = MagicMock()
    return kube


async def test_get_config_map(kube: KubernetesCluster) -> None:
    """Test reading a ConfigMap."""
    kube._core.read_namespaced_config_map.return_value = client.V1ConfigMap(
        metadata=client.V1ObjectMeta(name="cm", namespace="apps"),
        data={"app.yaml": "a: 1"},
    )
    config_map = await kube.get_config_map(NamedResource("ConfigMap", "apps", "cm"))
    assert config_map
    assert config_map.name == "cm"
    assert config_map.data == {"app.yaml": "a: 1"}
    kube._core.read_namespaced_config_map.assert_called_once_with(
        "cm", "apps", _request_timeout=5.0
    )


async def test_get_secret(kube: KubernetesCluster) -> None:
    """Test reading a Secret decodes its data."""
    kube._core.read_namespaced_secret.return_value = client.V1Secret(
        metadata=client.V1ObjectMeta(name="s", namespace="apps"),
        data={"key.txt": "AAEC"},
    )
    secret = await kube.get_secret(NamedResource("Secret", "apps", "s"))
    assert secret
    assert secret.data == {"key.txt": b"\x00\x01\x02"}


async def test_get_not_found(kube: KubernetesCluster) -> None:
    """Test a missing object is returned as None."""
    kube._core.read_namespaced_secret.side_effect = ApiException(
        status=404, reason="Not Found"
    )
    assert await kube.get_secret(NamedResource("Secret", "apps", "s")) is None


async def test_get_error(kube: KubernetesCluster) -> None:
    """Test other API errors are raised."""
    kube._core.read_namespaced_config_map.side_effect = ApiException(
        status=403, reason="Forbidden"
    )
    with pytest.raises(ClusterException, match="Forbidden") as exc_info:
        await kube.get_config_map(NamedResource("ConfigMap", "apps", "cm"))
    assert exc_info.value.status == 403


async def test_get_timeout(kube: KubernetesCluster) -> None:
    """Test a request that times out is raised as a cluster error."""
    kube._core.read_namespaced_config_map.side_effect = ReadTimeoutError(
        None, "/api/v1/namespaces/apps/configmaps/cm", "Read timed out."
    )
    with pytest.raises(ClusterException, match="Read timed out") as exc_info:
        await kube.get_config_map(NamedResource("ConfigMap", "apps", "cm"))
    assert exc_info.value.status is None


async def test_get_config_sync(kube: KubernetesCluster) -> None:
    """Test reading a ConfigSync custom resource."""
    kube._custom.get_namespaced_custom_object.return_value = CONFIG_SYNC_DOC
    config_sync = await kube.get_config_sync(
        NamedResource("ConfigSync", "apps", "example")
    )
    assert config_sync
    assert config_sync.namespaced_name == "apps/example"
    kube._custom.get_namespaced_custom_object.assert_called_once_with(
        "configs.example.io",
        "v1alpha1",
        "apps",
        "configsyncs",
        "example",
        _request_timeout=5.0,
    )


async def test_update_status(kube: KubernetesCluster) -> None:
    """Test the status is written to the status subresource."""
    config_sync = ConfigSync.parse_doc(CONFIG_SYNC_DOC)
    config_sync.status.source_revision = "abc"
    await kube.update_status(config_sync)
    kube._custom.patch_namespaced_custom_object_status.assert_called_once_with(
        "configs.example.io",
        "v1alpha1",
        "apps",
        "configsyncs",
        "example",
        {"status": {"sourceRevision": "abc", "conditions": []}},
        _request_timeout=5.0,
    )


@pytest.fixture(name="resource")
def resource_fixture(kube: KubernetesCluster) -> MagicMock:
    """Mock the dynamic client resource for ConfigMaps."""
    resource = MagicMock()
    resource.namespaced = True
    dynamic = MagicMock()
    dynamic.resources.get.return_value = resource
    kube._dynamic = dynamic
    return resource


@pytest.mark.parametrize("dry_run", [True, False])
async def test_apply(
    kube: KubernetesCluster, resource: MagicMock, dry_run: bool
) -> None:
    """Test objects are applied with a forced server-side apply."""
    obj = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "settings", "namespace": "app"},
    }
    await kube.apply(obj, field_manager="configsync", dry_run=dry_run)

    expected = {
        "body": obj,
        "name": "settings",
        "namespace": "app",
        "field_manager": "configsync",
        "force_conflicts": True,
        "_request_timeout": 5.0,
    }
    if dry_run:
        expected["dry_run"] = "All"
    resource.server_side_apply.assert_called_once_with(**expected)


async def test_apply_cluster_scoped(
    kube: KubernetesCluster, resource: MagicMock
) -> None:
    """Test cluster scoped objects are applied without a namespace."""
    resource.namespaced = False
    obj = {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": "app", "namespace": "ignored"},
    }
    await kube.apply(obj, field_manager="configsync")
    assert "namespace" not in resource.server_side_apply.call_args.kwargs


async def test_apply_rejected(kube: KubernetesCluster, resource: MagicMock) -> None:
    """Test a rejected apply is raised with its status."""
    resource.server_side_apply.side_effect = ApiException(
        status=422, reason="Unprocessable Entity"
    )
    with pytest.raises(ClusterException, match="422") as exc_info:
        await kube.apply(
            {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "a"}},
            field_manager="configsync",
        )
    assert exc_info.value.status == 422


def test_invalid_kubeconfig(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test an unusable kubeconfig is reported as a cluster error."""
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    kubeconfig = tmp_path / "kubeconfig"
    kubeconfig.write_text("apiVersion: v1\nkind: Config\nclusters: []\ncontexts: []\n")
    with pytest.raises(ClusterException, match="Unable to load"):
        KubernetesCluster.from_kubeconfig(str(kubeconfig), context="missing")


async def test_apply_connection_error(
    kube: KubernetesCluster, resource: MagicMock
) -> None:
    """Test an unreachable API server is raised as a cluster error."""
    resource.server_side_apply.side_effect = MaxRetryError(
        None, "/api/v1/namespaces/app/configmaps/a", "Connection refused"
    )
    with pytest.raises(ClusterException, match="ConfigMap app/a"):
        await kube.apply(
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {"name": "a", "namespace": "app"},
            },
            field_manager="configsync",
        )
