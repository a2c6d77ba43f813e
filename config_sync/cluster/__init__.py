"""
The cluster module is the boundary to the Kubernetes API.

- `Cluster` is the interface used by the source resolver, the manifest applier
  and the reconciler.
- `KubernetesCluster` talks to an API server with the official client.
- `InMemoryCluster` holds objects loaded from local files.
"""

from .cluster import Cluster
from .in_memory import InMemoryCluster, ApplyRequest

__all__ = [
    "Cluster",
    "InMemoryCluster",
    "ApplyRequest",
]
