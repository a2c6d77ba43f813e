"""Module for an in memory cluster.

The in memory cluster holds a set of objects loaded from local files. It is
used to resolve sources without a connection to an API server and records the
apply requests it receives.
"""

import copy
from dataclasses import dataclass
import logging
from typing import Any, TypeVar

from config_sync.exceptions import ClusterException
from config_sync.manifest import (
    BaseManifest,
    ConfigMap,
    ConfigSync,
    NamedResource,
    Secret,
)

from .cluster import Cluster

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseManifest)

UNPROCESSABLE_ENTITY = 422


@dataclass
class ApplyRequest:
    """An apply request received by the cluster."""

    obj: dict[str, Any]
    field_manager: str
    dry_run: bool

    @property
    def resource_id(self) -> NamedResource:
        """Identifier of the applied object."""
        metadata = self.obj.get("metadata", {})
        return NamedResource(
            kind=self.obj.get("kind", ""),
            namespace=metadata.get("namespace"),
            name=metadata.get("name", ""),
        )


@dataclass
class _Rejection:
    name: str
    dry_run: bool | None
    message: str


class InMemoryCluster(Cluster):
    """In-memory implementation of the Cluster interface."""

    def __init__(self) -> None:
        """Initialize the InMemoryCluster."""
        self._objects: dict[NamedResource, BaseManifest] = {}
        self._applied: dict[NamedResource, dict[str, Any]] = {}
        self._rejections: list[_Rejection] = []
        self.apply_requests: list[ApplyRequest] = []
        self.status_updates = 0

    def add_object(self, obj: BaseManifest) -> None:
        """Add a ConfigMap, Secret or ConfigSync to the cluster."""
        if not isinstance(obj, (ConfigMap, Secret, ConfigSync)):
            raise ValueError(f"Unsupported object type {type(obj).__name__}")
        resource_id = NamedResource(obj.kind, obj.namespace, obj.name)
        _LOGGER.debug("Adding object %s to cluster", resource_id)
        self._objects[resource_id] = obj

    def remove_object(self, resource_id: NamedResource) -> None:
        """Remove an object from the cluster."""
        self._objects.pop(resource_id, None)

    def reject(
        self, name: str, *, dry_run: bool | None = None, message: str = "invalid"
    ) -> None:
        """Reject apply requests for objects with the given name.

        Args:
            name: Name of the objects to reject.
            dry_run: Only reject dry-run (True) or real (False) requests, or
                both when None.
            message: The error message of the rejection.
        """
        self._rejections.append(_Rejection(name=name, dry_run=dry_run, message=message))

    def clear_rejections(self) -> None:
        """Accept all apply requests again."""
        self._rejections.clear()

    def _get(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        obj = self._objects.get(resource_id)
        if obj is None:
            return None
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id} is not of type {cls.__name__} "
                f"(was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    async def get_config_map(self, resource_id: NamedResource) -> ConfigMap | None:
        """Return the ConfigMap with the given identity."""
        return self._get(resource_id, ConfigMap)

    async def get_secret(self, resource_id: NamedResource) -> Secret | None:
        """Return the Secret with the given identity."""
        return self._get(resource_id, Secret)

    async def get_config_sync(self, resource_id: NamedResource) -> ConfigSync | None:
        """Return the ConfigSync with the given identity."""
        return self._get(resource_id, ConfigSync)

    async def apply(
        self, obj: dict[str, Any], *, field_manager: str, dry_run: bool = False
    ) -> None:
        """Record an apply request and store the object unless it is a dry-run."""
        request = ApplyRequest(
            obj=copy.deepcopy(obj), field_manager=field_manager, dry_run=dry_run
        )
        self.apply_requests.append(request)
        resource_id = request.resource_id
        for rejection in self._rejections:
            if rejection.name != resource_id.name:
                continue
            if rejection.dry_run is None or rejection.dry_run == dry_run:
                raise ClusterException(
                    f"{resource_id} is invalid: {rejection.message}",
                    status=UNPROCESSABLE_ENTITY,
                )
        if not dry_run:
            self._applied[resource_id] = request.obj

    def get_applied(self, resource_id: NamedResource) -> dict[str, Any] | None:
        """Return the last applied version of an object."""
        return self._applied.get(resource_id)

    def list_applied(self) -> list[dict[str, Any]]:
        """Return all applied objects."""
        return list(self._applied.values())

    async def update_status(self, config_sync: ConfigSync) -> None:
        """Persist the status of a ConfigSync known to the cluster."""
        self.status_updates += 1
        resource_id = config_sync.resource_id
        if (stored := self._objects.get(resource_id)) is None:
            _LOGGER.debug("Status update for unknown object %s", resource_id)
            return
        if isinstance(stored, ConfigSync):
            stored.status = copy.deepcopy(config_sync.status)
