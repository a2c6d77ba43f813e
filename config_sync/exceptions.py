"""Exceptions related to config-sync.

Every error that can be recorded on a ConfigSync carries a stable `reason`
which is used as the reason of the `Degraded` condition.
"""

__all__ = [
    "ConfigSyncException",
    "InputException",
    "InvalidSourceError",
    "SourceFetchError",
    "GitError",
    "RepositoryCacheCorruptedError",
    "SourceNotFoundError",
    "UnsupportedAuthMethodError",
    "CredentialsError",
    "ApplyError",
    "ManifestParseError",
    "ApplyValidationError",
    "ApplyFailedError",
    "InvalidRefreshIntervalError",
    "ClusterException",
]


class ConfigSyncException(Exception):
    """Generic base exception used for this library."""

    reason: str = "Error"
    """Condition reason recorded when this error ends a reconciliation."""


class InputException(ConfigSyncException):
    """Raised when the input files or values are not formatted as expected."""

    reason = "InvalidInput"


class InvalidSourceError(InputException):
    """Raised when a ConfigSync does not have exactly one source populated."""

    reason = "InvalidSource"


class SourceFetchError(ConfigSyncException):
    """Raised when the source content could not be fetched."""

    reason = "SourceFetchFailed"


class GitError(SourceFetchError):
    """Raised for failed git operations."""


class RepositoryCacheCorruptedError(GitError):
    """Raised when a cached repository stays unusable after being recreated."""

    reason = "RepositoryCacheCorrupted"


class SourceNotFoundError(SourceFetchError):
    """Raised when a referenced in-cluster source object does not exist."""


class UnsupportedAuthMethodError(SourceFetchError):
    """Raised for an unknown git authentication method."""


class CredentialsError(SourceFetchError):
    """Raised when the credentials for a git source are missing or invalid."""


class ApplyError(ConfigSyncException):
    """Raised when manifests could not be applied to a target."""

    reason = "ApplyFailed"


class ManifestParseError(ApplyError):
    """Raised when a manifest document is not a valid object."""


class ApplyValidationError(ApplyError):
    """Raised when the server rejects the dry-run apply of a document."""

    reason = "ApplyValidationFailed"


class ApplyFailedError(ApplyError):
    """Raised when the server rejects the apply after a successful dry-run."""


class InvalidRefreshIntervalError(InputException):
    """Raised when the refresh interval is not a valid duration."""

    reason = "InvalidRefreshInterval"


class ClusterException(ConfigSyncException):
    """Raised when a request to the cluster fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
        """HTTP status of the failed request, if any."""
