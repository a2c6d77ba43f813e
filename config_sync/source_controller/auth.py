"""Credentials for git repositories.

Credentials are read from a Secret and handed to git through the environment
of the git process only, so they never end up in the cached repository
configuration.
"""

from abc import ABC, abstractmethod
import base64
from collections.abc import Generator
import contextlib
from dataclasses import dataclass, field
import logging
import os
import shlex
import tempfile
from typing import ContextManager

from config_sync.cluster import Cluster
from config_sync.exceptions import (
    ClusterException,
    CredentialsError,
    UnsupportedAuthMethodError,
)
from config_sync.manifest import AUTH_HTTPS, AUTH_NONE, AUTH_SSH, SecretRef

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "GitAuth",
    "NoAuth",
    "BasicAuth",
    "SSHKeyAuth",
    "build_auth",
]

USERNAME_KEYS = ("username", "user")
PASSWORD_KEYS = ("password", "pass", "token")
SSH_KEY_KEYS = ("sshKey", "id_rsa", "ssh-privatekey", "private_key")


class GitAuth(ABC):
    """Authentication method for git network operations."""

    @abstractmethod
    def environment(self) -> ContextManager[dict[str, str]]:
        """Return a context that yields environment variables for git."""


@dataclass(frozen=True)
class NoAuth(GitAuth):
    """Anonymous access."""

    @contextlib.contextmanager
    def environment(self) -> Generator[dict[str, str], None, None]:
        yield {}


@dataclass(frozen=True)
class BasicAuth(GitAuth):
    """HTTPS basic authentication."""

    username: str
    password: str = field(repr=False)

    @contextlib.contextmanager
    def environment(self) -> Generator[dict[str, str], None, None]:
        """Pass the credentials as an extra http header through git config."""
        token = base64.b64encode(
            f"{self.username}:{self.password}".encode("utf-8")
        ).decode("ascii")
        yield {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {token}",
        }


@dataclass(frozen=True)
class SSHKeyAuth(GitAuth):
    """SSH private key authentication.

    Host keys are not verified.
    """

    private_key: bytes = field(repr=False)

    @contextlib.contextmanager
    def environment(self) -> Generator[dict[str, str], None, None]:
        """Write the key to a private temporary file used by the ssh command."""
        fd, key_path = tempfile.mkstemp(prefix="config-sync-ssh-")
        try:
            with os.fdopen(fd, "wb") as key_file:
                key_file.write(self.private_key)
                if not self.private_key.endswith(b"\n"):
                    key_file.write(b"\n")
            ssh_command = " ".join(
                [
                    "ssh",
                    "-i",
                    shlex.quote(key_path),
                    "-o",
                    "IdentitiesOnly=yes",
                    "-o",
                    "StrictHostKeyChecking=no",
                    "-o",
                    "UserKnownHostsFile=/dev/null",
                ]
            )
            yield {"GIT_SSH_COMMAND": ssh_command}
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(key_path)


def _first_value(data: dict[str, bytes], keys: tuple[str, ...]) -> bytes | None:
    """Return the first non-empty value among the accepted key names."""
    for key in keys:
        if value := data.get(key):
            return value
    return None


async def build_auth(
    cluster: Cluster,
    auth_method: str | None,
    secret_ref: SecretRef | None,
    namespace: str,
) -> GitAuth:
    """Resolve the authentication method of a git source.

    Args:
        cluster: The cluster holding the credential Secret.
        auth_method: One of none, https or ssh. Absent means none.
        secret_ref: The Secret holding the credentials.
        namespace: Namespace used when the reference has none.

    Raises:
        UnsupportedAuthMethodError: For an unknown auth method.
        CredentialsError: If the Secret or the expected keys are missing.
    """
    method = (auth_method or AUTH_NONE).lower()
    if method == AUTH_NONE:
        return NoAuth()
    if method not in (AUTH_HTTPS, AUTH_SSH):
        raise UnsupportedAuthMethodError(f"Unsupported auth method '{auth_method}'")
    if secret_ref is None:
        raise CredentialsError(f"authSecretRef is required for authMethod={method}")

    resource_id = secret_ref.resource_id(namespace)
    try:
        secret = await cluster.get_secret(resource_id)
    except ClusterException as err:
        raise CredentialsError(f"Failed to read {resource_id}: {err}") from err
    if secret is None:
        raise CredentialsError(f"Credentials {resource_id} not found")

    if method == AUTH_HTTPS:
        username = _first_value(secret.data, USERNAME_KEYS)
        password = _first_value(secret.data, PASSWORD_KEYS)
        if not username or not password:
            raise CredentialsError(
                f"{resource_id} missing username/password for https auth"
            )
        _LOGGER.info("Using HTTPS basic auth from %s", resource_id)
        return BasicAuth(
            username=username.decode("utf-8"), password=password.decode("utf-8")
        )

    if not (key := _first_value(secret.data, SSH_KEY_KEYS)):
        raise CredentialsError(f"{resource_id} missing private key for ssh auth")
    _LOGGER.warning(
        "Using SSH key auth from %s without host key verification", resource_id
    )
    return SSHKeyAuth(private_key=key)
