"""Mock cluster state shared by the fake client and the fake caches.

LoadBalancers are kept twice: the live view answers API reads, the cached
view answers lister reads. Both are written together unless a test edits
one of them on purpose to simulate a stale cache. Deployments have a single
view; the lister hands out the stored objects themselves, like a real
shared informer cache.
"""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from typing import Any

from kubernetes.client import V1Deployment

from lbprovider.sources import labels_match


def _key(namespace: str, name: str) -> tuple[str, str]:
    return namespace, name


class MockClusterState:
    """In-memory API server state."""

    def __init__(self) -> None:
        self.live_load_balancers: dict[tuple[str, str], dict[str, Any]] = {}
        self.cached_load_balancers: dict[tuple[str, str], dict[str, Any]] = {}
        self.deployments: dict[tuple[str, str], V1Deployment] = {}
        self.lock = threading.RLock()
        self._versions = itertools.count(1000)

    def next_resource_version(self) -> str:
        return str(next(self._versions))

    @staticmethod
    def new_uid() -> str:
        return str(uuid.uuid4())

    # -------------------------------------------------------------------------
    # LoadBalancers
    # -------------------------------------------------------------------------

    def add_load_balancer(
        self, lb: dict[str, Any], *, live: bool = True, cached: bool = True
    ) -> None:
        meta = lb["metadata"]
        key = _key(meta.get("namespace", "default"), meta["name"])
        with self.lock:
            if live:
                self.live_load_balancers[key] = copy.deepcopy(lb)
            if cached:
                self.cached_load_balancers[key] = copy.deepcopy(lb)

    def remove_load_balancer(
        self, namespace: str, name: str, *, live: bool = True, cached: bool = True
    ) -> None:
        with self.lock:
            if live:
                self.live_load_balancers.pop(_key(namespace, name), None)
            if cached:
                self.cached_load_balancers.pop(_key(namespace, name), None)

    def cached_load_balancer(self, namespace: str, name: str) -> dict[str, Any] | None:
        with self.lock:
            return self.cached_load_balancers.get(_key(namespace, name))

    def live_load_balancer(self, namespace: str, name: str) -> dict[str, Any] | None:
        with self.lock:
            return self.live_load_balancers.get(_key(namespace, name))

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    def add_deployment(self, deployment: V1Deployment) -> V1Deployment:
        """Store a Deployment as is, filling in uid and resource version."""
        meta = deployment.metadata
        if not meta.uid:
            meta.uid = self.new_uid()
        if not meta.resource_version:
            meta.resource_version = self.next_resource_version()
        with self.lock:
            self.deployments[_key(meta.namespace, meta.name)] = deployment
        return deployment

    def get_deployment(self, namespace: str, name: str) -> V1Deployment | None:
        with self.lock:
            return self.deployments.get(_key(namespace, name))

    def list_deployments(
        self, namespace: str, selector: dict[str, str] | None = None
    ) -> list[V1Deployment]:
        """Deployments of ``namespace`` in insertion order."""
        with self.lock:
            items = [
                d
                for (ns, _), d in self.deployments.items()
                if ns == namespace and labels_match(selector or {}, d.metadata.labels)
            ]
        return items
