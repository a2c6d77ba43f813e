"""Cluster implementation backed by the Kubernetes API.

The kubernetes client is synchronous, so every request runs in a worker thread
and is bounded by a request timeout.
"""

import asyncio
from collections.abc import Callable
import logging
import os
import threading
from typing import Any, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiClient, ApiException
from kubernetes.config import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError
from urllib3.exceptions import HTTPError

from config_sync.exceptions import ClusterException
from config_sync.manifest import (
    CONFIG_SYNC_GROUP,
    CONFIG_SYNC_PLURAL,
    CONFIG_SYNC_VERSION,
    DEFAULT_NAMESPACE,
    ConfigMap,
    ConfigSync,
    NamedResource,
    Secret,
)

from .cluster import Cluster

__all__ = ["KubernetesCluster"]

_LOGGER = logging.getLogger(__name__)

R = TypeVar("R")

NOT_FOUND = 404
DRY_RUN_ALL = "All"
DEFAULT_REQUEST_TIMEOUT = 30.0


class KubernetesCluster(Cluster):
    """Cluster implementation using the official kubernetes client."""

    def __init__(
        self, api_client: ApiClient, request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    ) -> None:
        """Initialize KubernetesCluster."""
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)
        self._request_timeout = request_timeout
        self._dynamic: DynamicClient | None = None
        self._dynamic_lock = threading.Lock()

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: str | None = None,
        context: str | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> "KubernetesCluster":
        """Create a cluster from a kubeconfig file or the in-cluster service account."""
        configuration = client.Configuration()
        try:
            if kubeconfig is None and context is None and os.environ.get(
                "KUBERNETES_SERVICE_HOST"
            ):
                _LOGGER.debug("Using in-cluster configuration")
                config.load_incluster_config(client_configuration=configuration)
            else:
                config.load_kube_config(
                    config_file=kubeconfig,
                    context=context,
                    client_configuration=configuration,
                )
        except ConfigException as err:
            raise ClusterException(f"Unable to load cluster configuration: {err}") from err
        return cls(ApiClient(configuration), request_timeout=request_timeout)

    async def _call(self, description: str, func: Callable[..., R], *args: Any) -> R:
        """Run a blocking API call in a worker thread."""
        try:
            return await asyncio.to_thread(
                func, *args, _request_timeout=self._request_timeout
            )
        except ApiException as err:
            raise ClusterException(
                f"{description} failed: {err.status} {err.reason}", status=err.status
            ) from err
        except HTTPError as err:
            raise ClusterException(f"{description} failed: {err}") from err

    async def _read(
        self, resource_id: NamedResource, func: Callable[..., Any]
    ) -> dict[str, Any] | None:
        """Read an object, returning its serialized form or None if missing."""
        try:
            obj = await self._call(
                f"Reading {resource_id}",
                func,
                resource_id.name,
                resource_id.namespace or DEFAULT_NAMESPACE,
            )
        except ClusterException as err:
            if err.status == NOT_FOUND:
                return None
            raise
        doc: dict[str, Any] = self._api_client.sanitize_for_serialization(obj)
        doc.setdefault("apiVersion", "v1")
        doc.setdefault("kind", resource_id.kind)
        return doc

    async def get_config_map(self, resource_id: NamedResource) -> ConfigMap | None:
        """Return the ConfigMap with the given identity."""
        doc = await self._read(resource_id, self._core.read_namespaced_config_map)
        if doc is None:
            return None
        return ConfigMap.parse_doc(doc)

    async def get_secret(self, resource_id: NamedResource) -> Secret | None:
        """Return the Secret with the given identity."""
        doc = await self._read(resource_id, self._core.read_namespaced_secret)
        if doc is None:
            return None
        return Secret.parse_doc(doc)

    async def get_config_sync(self, resource_id: NamedResource) -> ConfigSync | None:
        """Return the ConfigSync with the given identity."""
        try:
            doc = await self._call(
                f"Reading {resource_id}",
                self._custom.get_namespaced_custom_object,
                CONFIG_SYNC_GROUP,
                CONFIG_SYNC_VERSION,
                resource_id.namespace or DEFAULT_NAMESPACE,
                CONFIG_SYNC_PLURAL,
                resource_id.name,
            )
        except ClusterException as err:
            if err.status == NOT_FOUND:
                return None
            raise
        return ConfigSync.parse_doc(doc)

    def _dynamic_client(self) -> DynamicClient:
        """Return the dynamic client, running API discovery on first use."""
        with self._dynamic_lock:
            if self._dynamic is None:
                self._dynamic = DynamicClient(self._api_client)
            return self._dynamic

    def _server_side_apply(
        self, obj: dict[str, Any], field_manager: str, dry_run: bool
    ) -> None:
        resource = self._dynamic_client().resources.get(
            api_version=obj.get("apiVersion"), kind=obj.get("kind")
        )
        metadata = obj.get("metadata", {})
        kwargs: dict[str, Any] = {
            "body": obj,
            "name": metadata.get("name"),
            "field_manager": field_manager,
            "force_conflicts": True,
            "_request_timeout": self._request_timeout,
        }
        if resource.namespaced:
            kwargs["namespace"] = metadata.get("namespace") or DEFAULT_NAMESPACE
        if dry_run:
            kwargs["dry_run"] = DRY_RUN_ALL
        resource.server_side_apply(**kwargs)

    async def apply(
        self, obj: dict[str, Any], *, field_manager: str, dry_run: bool = False
    ) -> None:
        """Server-side apply an object, forcing ownership of conflicting fields."""
        try:
            await asyncio.to_thread(self._server_side_apply, obj, field_manager, dry_run)
        except ApiException as err:
            raise ClusterException(
                f"{err.status} {err.reason}: {_error_body(err)}", status=err.status
            ) from err
        except (ResourceNotFoundError, ResourceNotUniqueError) as err:
            raise ClusterException(
                f"Unable to resolve {obj.get('apiVersion')}/{obj.get('kind')}: {err}"
            ) from err
        except HTTPError as err:
            raise ClusterException(f"Applying {_describe(obj)} failed: {err}") from err

    async def update_status(self, config_sync: ConfigSync) -> None:
        """Persist the status of a ConfigSync with a merge patch."""
        await self._call(
            f"Updating status of {config_sync.resource_id}",
            self._custom.patch_namespaced_custom_object_status,
            CONFIG_SYNC_GROUP,
            CONFIG_SYNC_VERSION,
            config_sync.namespace,
            CONFIG_SYNC_PLURAL,
            config_sync.name,
            {"status": config_sync.status.to_dict()},
        )


def _error_body(err: ApiException) -> str:
    """Return the most useful part of an API error response."""
    return str(err.body or err.reason or err)


def _describe(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if namespace := metadata.get("namespace"):
        name = f"{namespace}/{name}"
    return f"{obj.get('kind')} {name}"
