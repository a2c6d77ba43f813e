"""Interface to the cluster that holds sources, targets and ConfigSync objects."""

from abc import ABC, abstractmethod
from typing import Any

from config_sync.manifest import ConfigMap, ConfigSync, NamedResource, Secret


class Cluster(ABC):
    """Abstract base class for the API calls made while reconciling.

    Implementations raise `ClusterException` for failed requests. Reads of
    objects that do not exist return None.
    """

    @abstractmethod
    async def get_config_map(self, resource_id: NamedResource) -> ConfigMap | None:
        """Return the ConfigMap with the given identity."""

    @abstractmethod
    async def get_secret(self, resource_id: NamedResource) -> Secret | None:
        """Return the Secret with the given identity."""

    @abstractmethod
    async def get_config_sync(self, resource_id: NamedResource) -> ConfigSync | None:
        """Return the ConfigSync with the given identity."""

    @abstractmethod
    async def apply(
        self, obj: dict[str, Any], *, field_manager: str, dry_run: bool = False
    ) -> None:
        """Server-side apply an object, forcing ownership of conflicting fields.

        Args:
            obj: The complete object to apply.
            field_manager: The identity owning the applied fields.
            dry_run: Only validate the request, nothing is persisted.
        """

    @abstractmethod
    async def update_status(self, config_sync: ConfigSync) -> None:
        """Persist the status of a ConfigSync."""
