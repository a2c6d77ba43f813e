"""Representation of the objects read and written by config-sync.

The `ConfigSync` custom resource describes a source (a git repository, a
ConfigMap or a Secret) and a list of targets the manifests in that source are
applied to. `ConfigMap` and `Secret` are the in-cluster objects that may be
used as a source.
"""

import base64
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, ClassVar

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .conditions import Conditions
from .exceptions import InputException, InvalidSourceError

__all__ = [
    "read_documents",
    "parse_raw_obj",
    "NamedResource",
    "ConfigSync",
    "ConfigSyncSpec",
    "ConfigSyncStatus",
    "SourceSpec",
    "GitSource",
    "ObjectRef",
    "ConfigMapRef",
    "SecretRef",
    "TargetRef",
    "ConfigMap",
    "Secret",
]

_LOGGER = logging.getLogger(__name__)


CONFIG_SYNC_GROUP = "configs.example.io"
CONFIG_SYNC_VERSION = "v1alpha1"
CONFIG_SYNC_API_VERSION = f"{CONFIG_SYNC_GROUP}/{CONFIG_SYNC_VERSION}"
CONFIG_SYNC_KIND = "ConfigSync"
CONFIG_SYNC_PLURAL = "configsyncs"
CONFIG_MAP_KIND = "ConfigMap"
SECRET_KIND = "Secret"
DEFAULT_NAMESPACE = "default"

TARGET_TYPES = (CONFIG_MAP_KIND, SECRET_KIND)

AUTH_NONE = "none"
AUTH_HTTPS = "https"
AUTH_SSH = "ssh"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized manifest."""
        return cls.from_dict(yaml.safe_load(content))

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml.dump(self.to_dict(), sort_keys=False, explicit_start=True)

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class ObjectRef(BaseManifest):
    """A reference to an object in the cluster."""

    kind: ClassVar[str] = ""
    """The kind of the referenced object."""

    name: str
    """The name of the referenced object."""

    namespace: str | None = None
    """The namespace of the referenced object, defaults to the ConfigSync's."""

    def resource_id(self, default_namespace: str) -> NamedResource:
        """Return the identifier of the referenced object."""
        return NamedResource(
            kind=self.kind,
            namespace=self.namespace or default_namespace,
            name=self.name,
        )


@dataclass
class ConfigMapRef(ObjectRef):
    """A reference to a ConfigMap used as a source."""

    kind: ClassVar[str] = CONFIG_MAP_KIND


@dataclass
class SecretRef(ObjectRef):
    """A reference to a Secret used as a source or for credentials."""

    kind: ClassVar[str] = SECRET_KIND


@dataclass
class GitSource(BaseManifest):
    """A git repository holding the manifests to apply."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """The HTTPS or SSH URL of the repository."""

    path: str | None = None
    """Directory within the repository that holds the manifests."""

    branch: str | None = None
    """The branch to checkout, defaults to the repository default branch."""

    revision: str | None = None
    """A commit to checkout, takes precedence over the branch."""

    auth_method: str | None = field(
        metadata=field_options(alias="authMethod"), default=None
    )
    """How to authenticate: ssh, https or none."""

    auth_secret_ref: SecretRef | None = field(
        metadata=field_options(alias="authSecretRef"), default=None
    )
    """Secret holding the ssh private key or https credentials."""


@dataclass
class SourceSpec(BaseManifest):
    """Describes where the manifests come from. Exactly one field is set."""

    git: GitSource | None = None
    """A git repository source."""

    config_map_ref: ConfigMapRef | None = field(
        metadata=field_options(alias="configMapRef"), default=None
    )
    """A ConfigMap whose keys are file names and values file contents."""

    secret_ref: SecretRef | None = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    """A Secret whose keys are file names and values file contents."""

    def selected(self) -> GitSource | ConfigMapRef | SecretRef:
        """Return the single populated source.

        Raises:
            InvalidSourceError: If zero or more than one source is populated.
        """
        populated = [
            source
            for source in (self.git, self.config_map_ref, self.secret_ref)
            if source is not None
        ]
        if len(populated) != 1:
            raise InvalidSourceError(
                "Exactly one of git, configMapRef or secretRef must be specified, "
                f"found {len(populated)}"
            )
        return populated[0]


@dataclass
class TargetRef(BaseManifest):
    """A location the source manifests are applied to."""

    namespace: str
    """The namespace objects are written to."""

    name: str
    """The name of the target object."""

    type: str
    """The kind of the target object, ConfigMap or Secret."""


@dataclass
class ConfigSyncSpec(BaseManifest):
    """Desired state of a ConfigSync."""

    source: SourceSpec
    """The source of the manifests."""

    targets: list[TargetRef]
    """Targets the manifests are applied to, in order."""

    refresh_interval: str | None = field(
        metadata=field_options(alias="refreshInterval"), default=None
    )
    """How often the source is checked for changes e.g. 30s or 5m."""


@dataclass
class ConfigSyncStatus(BaseManifest):
    """Observed state of a ConfigSync."""

    last_synced_time: str | None = field(
        metadata=field_options(alias="lastSyncedTime"), default=None
    )
    """Time of the last completed reconciliation."""

    source_revision: str | None = field(
        metadata=field_options(alias="sourceRevision"), default=None
    )
    """Content identifier of the source that was last applied."""

    applied_target_count: int | None = field(
        metadata=field_options(alias="appliedTargetCount"), default=None
    )
    """Number of targets applied during the last reconciliation."""

    conditions: Conditions = field(default_factory=Conditions)
    """Conditions of the resource, unique by type."""


@dataclass
class ConfigSync(BaseManifest):
    """A ConfigSync keeps targets in the cluster in sync with a source."""

    kind: ClassVar[str] = CONFIG_SYNC_KIND
    """The kind of the object."""

    name: str
    """The name of the ConfigSync."""

    namespace: str
    """The namespace of the ConfigSync."""

    spec: ConfigSyncSpec
    """The desired state."""

    status: ConfigSyncStatus = field(default_factory=ConfigSyncStatus)
    """The observed state."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ConfigSync":
        """Parse a ConfigSync from a kubernetes resource object."""
        _check_version(doc, CONFIG_SYNC_GROUP)
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        namespace = metadata.get("namespace") or DEFAULT_NAMESPACE
        if not (spec_dict := doc.get("spec")):
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        try:
            spec = ConfigSyncSpec.from_dict(spec_dict)
            status = ConfigSyncStatus.from_dict(doc.get("status") or {})
        except (MissingField, InvalidFieldValue) as err:
            raise InputException(f"Invalid {cls} {namespace}/{name}: {err}") from err
        if not spec.targets:
            raise InputException(
                f"Invalid {cls} {namespace}/{name}: at least one target is required"
            )
        for target in spec.targets:
            if target.type not in TARGET_TYPES:
                raise InputException(
                    f"Invalid {cls} {namespace}/{name}: unsupported target type "
                    f"'{target.type}'"
                )
        return cls(name=name, namespace=namespace, spec=spec, status=status)

    @property
    def resource_id(self) -> NamedResource:
        """Return the identifier of the ConfigSync."""
        return NamedResource(kind=self.kind, namespace=self.namespace, name=self.name)

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"


@dataclass
class ConfigMap(BaseManifest):
    """A ConfigMap is an API object used to store data in key-value pairs."""

    kind: ClassVar[str] = CONFIG_MAP_KIND
    """The kind of the ConfigMap."""

    name: str
    """The name of the ConfigMap."""

    namespace: str | None = None
    """The namespace of the ConfigMap."""

    data: dict[str, str] = field(
        metadata={"serialize": "omit"}, default_factory=dict
    )
    """The data in the ConfigMap."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ConfigMap":
        """Parse a config map object from a kubernetes resource."""
        _check_version(doc, "v1")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        return ConfigMap(
            name=name,
            namespace=metadata.get("namespace"),
            data={key: str(value) for key, value in (doc.get("data") or {}).items()},
        )


@dataclass
class Secret(BaseManifest):
    """A Secret contains a small amount of sensitive data."""

    kind: ClassVar[str] = SECRET_KIND
    """The kind of the Secret."""

    name: str
    """The name of the Secret."""

    namespace: str | None = None
    """The namespace of the Secret."""

    data: dict[str, bytes] = field(
        metadata={"serialize": "omit"}, default_factory=dict
    )
    """The decoded data in the Secret."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Secret":
        """Parse a secret object from a kubernetes resource.

        Values in `data` are base64 decoded and entries of `stringData` are
        merged in, the same way the API server does on write.
        """
        _check_version(doc, "v1")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        data: dict[str, bytes] = {}
        for key, value in (doc.get("data") or {}).items():
            try:
                data[key] = base64.b64decode(value or "", validate=True)
            except ValueError as err:
                raise InputException(
                    f"Invalid {cls} {name} has undecodable data key '{key}'"
                ) from err
        for key, value in (doc.get("stringData") or {}).items():
            data[key] = str(value).encode("utf-8")
        return Secret(name=name, namespace=metadata.get("namespace"), data=data)


def parse_raw_obj(obj: dict[str, Any]) -> BaseManifest:
    """Parse a raw kubernetes object into a BaseManifest."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if kind == CONFIG_SYNC_KIND:
        return ConfigSync.parse_doc(obj)
    if kind == CONFIG_MAP_KIND:
        return ConfigMap.parse_doc(obj)
    if kind == SECRET_KIND:
        return Secret.parse_doc(obj)
    raise InputException(f"Unsupported object kind '{kind}'")


async def read_documents(path: Path) -> list[BaseManifest]:
    """Return the objects in a multi-document YAML file."""
    async with aiofiles.open(str(path)) as manifest_file:
        content = await manifest_file.read()
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path}: {err}") from err
    objects = []
    for doc in docs:
        if not doc:
            continue
        if not isinstance(doc, dict):
            raise InputException(f"Invalid document in {path}: {doc}")
        objects.append(parse_raw_obj(doc))
    _LOGGER.debug("Read %d objects from %s", len(objects), path)
    return objects
