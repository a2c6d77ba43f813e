"""
config-sync reconciles `ConfigSync` resources: it resolves a git repository,
ConfigMap or Secret source to a content identifier and applies the manifests
it contains to the cluster with a server-side apply.
"""

__all__ = [
    "apply",
    "cluster",
    "configsync_controller",
    "exceptions",
    "manifest",
    "source_controller",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
