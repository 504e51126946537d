"""Event handlers that turn cache notifications into queued LoadBalancers.

Deployment events are filtered by the provider label so this provider does
not react to Deployments of other providers sharing the same LoadBalancer.
A matching Deployment is resolved to its owning LoadBalancer through the
controller owner reference and the LoadBalancer cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from kubernetes.client import V1Deployment, V1OwnerReference

from .claim import controller_ref_of
from .models import LB_KIND, requests_provider, resource_version_of, uid_of
from .sources import DeletedFinalStateUnknown, LoadBalancerLister

logger = logging.getLogger(__name__)


class Enqueuer(Protocol):
    def enqueue(self, obj: Any) -> None: ...


class DeploymentEventHandler:
    """Enqueues the owning LoadBalancer of provider Deployments.

    Args:
        lb_lister: Cached LoadBalancers used to resolve owner references.
        queue: Destination of resolved LoadBalancers.
        filtered: Returns True for Deployments this provider ignores.
    """

    def __init__(
        self,
        lb_lister: LoadBalancerLister,
        queue: Enqueuer,
        filtered: Callable[[V1Deployment], bool],
    ) -> None:
        self._lb_lister = lb_lister
        self._queue = queue
        self._filtered = filtered

    def on_add(self, obj: Any) -> None:
        if not isinstance(obj, V1Deployment) or self._filtered(obj):
            return
        if obj.metadata.deletion_timestamp is not None:
            # A restarted controller can see an object already pending deletion
            self.on_delete(obj)
            return
        self._enqueue_owner(obj.metadata.namespace, controller_ref_of(obj))

    def on_update(self, old: Any, new: Any) -> None:
        if not isinstance(old, V1Deployment) or not isinstance(new, V1Deployment):
            return
        if old.metadata.resource_version == new.metadata.resource_version:
            # Periodic resync sends update events for all known objects
            return
        if self._filtered(old) and self._filtered(new):
            return

        cur_ref = controller_ref_of(new)
        old_ref = controller_ref_of(old)
        if old_ref is not None and (cur_ref is None or cur_ref.uid != old_ref.uid):
            # The controller ref changed, sync the old controller too
            self._enqueue_owner(old.metadata.namespace, old_ref)
        self._enqueue_owner(new.metadata.namespace, cur_ref)

    def on_delete(self, obj: Any) -> None:
        if isinstance(obj, DeletedFinalStateUnknown):
            obj = obj.obj
        if not isinstance(obj, V1Deployment):
            logger.warning(
                "Ignoring delete event for unexpected object",
                extra={"object_type": type(obj).__name__},
            )
            return
        if self._filtered(obj):
            return
        self._enqueue_owner(obj.metadata.namespace, controller_ref_of(obj))

    def _enqueue_owner(self, namespace: str, ref: V1OwnerReference | None) -> None:
        lb = self._resolve_controller_ref(namespace, ref)
        if lb is not None:
            self._queue.enqueue(lb)

    def _resolve_controller_ref(
        self, namespace: str, ref: V1OwnerReference | None
    ) -> dict[str, Any] | None:
        if ref is None or ref.kind != LB_KIND:
            return None
        lb = self._lb_lister.get(namespace, ref.name)
        if lb is None:
            return None
        if uid_of(lb) != ref.uid:
            # Same name, different LoadBalancer
            return None
        return lb


class LoadBalancerEventHandler:
    """Enqueues LoadBalancers that request this provider, or used to."""

    def __init__(self, queue: Enqueuer) -> None:
        self._queue = queue

    def on_add(self, obj: Any) -> None:
        if requests_provider(obj):
            self._queue.enqueue(obj)

    def on_update(self, old: Any, new: Any) -> None:
        if resource_version_of(old) == resource_version_of(new):
            return
        # A removed provider request still needs one pass to clean up
        if requests_provider(old) or requests_provider(new):
            self._queue.enqueue(new)

    def on_delete(self, obj: Any) -> None:
        if requests_provider(obj):
            self._queue.enqueue(obj)
