"""Interfaces of the change notification source.

The watch/list machinery and its local cache live outside this package.
The provider only needs listers that read the cache and informers that
deliver add/update/delete notifications to registered handlers.

Cached objects are shared with every other reader: nothing here may be
mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes.client import V1Deployment


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone delivered on delete when the final object state was missed."""

    key: str
    obj: Any


class EventHandler(Protocol):
    def on_add(self, obj: Any) -> None: ...

    def on_update(self, old: Any, new: Any) -> None: ...

    def on_delete(self, obj: Any) -> None: ...


class LoadBalancerLister(Protocol):
    """Cached view of LoadBalancer custom objects (plain dicts)."""

    def get(self, namespace: str, name: str) -> dict[str, Any] | None: ...


class DeploymentLister(Protocol):
    """Cached view of Deployments."""

    def list(self, namespace: str, selector: dict[str, str]) -> list[V1Deployment]: ...


class LoadBalancerInformer(Protocol):
    @property
    def lister(self) -> LoadBalancerLister: ...

    def add_event_handler(self, handler: EventHandler) -> None: ...


class DeploymentInformer(Protocol):
    @property
    def lister(self) -> DeploymentLister: ...

    def add_event_handler(self, handler: EventHandler) -> None: ...


class InformerFactory(Protocol):
    """Shared informers, created and started by the controller host."""

    def load_balancers(self) -> LoadBalancerInformer: ...

    def deployments(self) -> DeploymentInformer: ...


def labels_match(selector: dict[str, str], labels: dict[str, str] | None) -> bool:
    """Equality-based label selector match (every selector pair present)."""
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())
