"""Pydantic models for the LoadBalancer custom resource.

These models provide:
1. Type-safe parsing of the cached custom objects (plain dicts)
2. Validation at the boundary (fail fast, fail loudly)
3. A private copy of every cached object before anything reads or mutates it
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .sources import DeletedFinalStateUnknown

# LoadBalancer API coordinates
LB_GROUP = "loadbalance.caicloud.io"
LB_VERSION = "v1alpha2"
LB_API_VERSION = f"{LB_GROUP}/{LB_VERSION}"
LB_KIND = "LoadBalancer"
LB_PLURAL = "loadbalancers"

# Name of this provider in spec.providers and status.providersStatuses
PROVIDER_NAME = "azure"

# A LoadBalancer with this annotation set to "true" is locked against automatic change
STATIC_ANNOTATION = f"{LB_GROUP}/static"

DNS1123_LABEL_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
VALID_AZURE_SKUS = ("Basic", "Standard")


class InvalidLoadBalancerError(ValueError):
    """Raised when a LoadBalancer object fails schema validation."""

    pass


# =============================================================================
# Metadata
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the provider."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=63)]
    namespace: Annotated[str, Field(min_length=1, max_length=63)] = "default"
    uid: str = ""
    resource_version: str = Field("", alias="resourceVersion")
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    @field_validator("name", "namespace")
    @classmethod
    def validate_dns_label(cls, v: str) -> str:
        if not re.match(DNS1123_LABEL_PATTERN, v):
            raise ValueError(f"must be a DNS-1123 label: {v!r}")
        return v


# =============================================================================
# Spec
# =============================================================================


class AzureProviderSpec(BaseModel):
    """Azure provider request carried in spec.providers.azure."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str | None = None
    resource_group_name: str | None = Field(None, alias="resourceGroupName")
    location: str | None = None
    sku: str = "Standard"
    cluster_id: str | None = Field(None, alias="clusterID")

    @field_validator("sku")
    @classmethod
    def validate_sku(cls, v: str) -> str:
        if v not in VALID_AZURE_SKUS:
            raise ValueError(f"sku must be one of {list(VALID_AZURE_SKUS)}")
        return v


class ProvidersSpec(BaseModel):
    """Providers requested by a LoadBalancer. Other providers are ignored."""

    model_config = {"extra": "ignore"}

    azure: AzureProviderSpec | None = None


class NodesSpec(BaseModel):
    """Proxy node placement."""

    model_config = {"extra": "ignore"}

    replicas: Annotated[int, Field(ge=0)] | None = None
    names: list[str] = Field(default_factory=list)


class LoadBalancerSpec(BaseModel):
    model_config = {"extra": "ignore"}

    providers: ProvidersSpec = Field(default_factory=ProvidersSpec)
    nodes: NodesSpec = Field(default_factory=NodesSpec)


class ProvidersStatuses(BaseModel):
    model_config = {"extra": "ignore"}

    azure: dict[str, Any] | None = None


class LoadBalancerStatus(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    providers_statuses: ProvidersStatuses = Field(
        default_factory=ProvidersStatuses, alias="providersStatuses"
    )


# =============================================================================
# LoadBalancer
# =============================================================================


class LoadBalancer(BaseModel):
    """A validated, private copy of a LoadBalancer custom object."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(LB_API_VERSION, alias="apiVersion")
    kind: str = LB_KIND
    metadata: ObjectMeta
    spec: LoadBalancerSpec = Field(default_factory=LoadBalancerSpec)
    status: LoadBalancerStatus = Field(default_factory=LoadBalancerStatus)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v != LB_KIND:
            raise ValueError(f"kind must be {LB_KIND}, got {v!r}")
        return v

    @classmethod
    def from_object(cls, obj: Any) -> LoadBalancer:
        """Parse and validate a cached object into a fresh LoadBalancer.

        Accepts raw custom-object dicts, LoadBalancer instances (deep-copied)
        and cache tombstones wrapping either.

        Raises:
            InvalidLoadBalancerError: If the object does not match the schema.
        """
        if isinstance(obj, DeletedFinalStateUnknown):
            obj = obj.obj
        if isinstance(obj, LoadBalancer):
            return obj.model_copy(deep=True)
        if not isinstance(obj, Mapping):
            raise InvalidLoadBalancerError(f"expected LoadBalancer, got {type(obj).__name__}")
        try:
            return cls.model_validate(obj)
        except ValidationError as e:
            raise InvalidLoadBalancerError(f"invalid LoadBalancer: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the custom-object wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def being_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def requests_provider(self) -> bool:
        """True when spec.providers.azure is present."""
        return self.spec.providers.azure is not None

    @property
    def is_static(self) -> bool:
        """True when the LoadBalancer is locked against automatic change."""
        return self.metadata.annotations.get(STATIC_ANNOTATION, "").lower() == "true"

    @property
    def has_provider_status(self) -> bool:
        return self.status.providers_statuses.azure is not None


# =============================================================================
# Raw object helpers
# =============================================================================
# Event handlers see raw cache objects and must not pay for (or fail on)
# full validation just to compute a queue key.


def _raw_metadata(obj: Any) -> Mapping[str, Any]:
    if isinstance(obj, Mapping):
        metadata = obj.get("metadata") or {}
        return metadata if isinstance(metadata, Mapping) else {}
    return {}


def load_balancer_key(obj: Any) -> str:
    """Return the ``namespace/name`` queue key of a LoadBalancer-like object.

    Raises:
        InvalidLoadBalancerError: If the object carries no name.
    """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    if isinstance(obj, LoadBalancer):
        return obj.key

    metadata = getattr(obj, "metadata", None)
    if metadata is not None and not isinstance(obj, Mapping):
        # Kubernetes client models (V1Deployment, ...)
        name = getattr(metadata, "name", None)
        namespace = getattr(metadata, "namespace", None) or "default"
    else:
        raw = _raw_metadata(obj)
        name = raw.get("name")
        namespace = raw.get("namespace") or "default"

    if not name:
        raise InvalidLoadBalancerError(f"object has no name: {obj!r}")
    return f"{namespace}/{name}"


def requests_provider(obj: Any) -> bool:
    """True when a raw LoadBalancer object requests this provider."""
    if isinstance(obj, DeletedFinalStateUnknown):
        obj = obj.obj
    if isinstance(obj, LoadBalancer):
        return obj.requests_provider
    if not isinstance(obj, Mapping):
        return False
    spec = obj.get("spec")
    if not isinstance(spec, Mapping):
        return False
    providers = spec.get("providers")
    return isinstance(providers, Mapping) and providers.get(PROVIDER_NAME) is not None


def uid_of(obj: Any) -> str:
    """UID of a raw LoadBalancer object, or an empty string."""
    if isinstance(obj, LoadBalancer):
        return obj.uid
    return str(_raw_metadata(obj).get("uid") or "")


def resource_version_of(obj: Any) -> str:
    if isinstance(obj, LoadBalancer):
        return obj.metadata.resource_version
    return str(_raw_metadata(obj).get("resourceVersion") or "")
