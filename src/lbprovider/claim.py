"""Ownership claiming of provider Deployments.

A Deployment belongs to a LoadBalancer when its labels match the
LoadBalancer's selector and its controller owner reference points at the
LoadBalancer's UID. Orphans with matching labels are adopted, owned
Deployments whose labels drifted away are released.

The candidate list and the owner both come from the cache and can be stale.
Before the first adoption or release, and before any Deployment is handed
back as claimed, the owner is re-read live from the API server (see
kubernetes/kubernetes#42639). If it is gone, was recreated under the same
name or is being deleted, the claim aborts with OwnerGoneError and claims
nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from kubernetes.client import V1Deployment, V1OwnerReference

from .desired import selector_for
from .kube import ClusterAPIError, ClusterClient, NotFoundError
from .models import LB_API_VERSION, LB_KIND, LoadBalancer
from .sources import DeploymentLister, labels_match

logger = logging.getLogger(__name__)


class OwnerGoneError(Exception):
    """The owning LoadBalancer vanished or changed identity during a claim."""

    pass


class ClaimError(Exception):
    """One or more adopt/release calls failed."""

    def __init__(self, errors: list[ClusterAPIError]) -> None:
        self.errors = errors
        details = "; ".join(str(e) for e in errors)
        super().__init__(f"{len(errors)} claim operation(s) failed: {details}")


def controller_ref_of(deployment: V1Deployment) -> V1OwnerReference | None:
    """The owner reference flagged as controller, if any."""
    for ref in deployment.metadata.owner_references or []:
        if ref.controller:
            return ref
    return None


class OwnerRecheck:
    """Live, cache-bypassing recheck of the owner, evaluated at most once.

    Raises OwnerGoneError when the owner no longer exists, has a new UID or
    is being deleted. Transient read errors propagate unchanged so that the
    sync fails and is retried.
    """

    def __init__(self, client: ClusterClient, owner: LoadBalancer) -> None:
        self._client = client
        self._owner = owner
        self._done = False
        self._error: Exception | None = None

    def __call__(self) -> None:
        if not self._done:
            self._done = True
            try:
                self._check()
            except Exception as e:
                self._error = e
        if self._error is not None:
            raise self._error

    def _check(self) -> None:
        owner = self._owner
        try:
            raw = self._client.get_load_balancer(owner.namespace, owner.name)
        except NotFoundError as e:
            raise OwnerGoneError(f"original LoadBalancer {owner.key} is gone: not found") from e

        fresh = LoadBalancer.from_object(raw)
        if fresh.uid != owner.uid:
            raise OwnerGoneError(
                f"original LoadBalancer {owner.key} is gone: "
                f"got uid {fresh.uid}, wanted {owner.uid}"
            )
        if fresh.being_deleted:
            raise OwnerGoneError(
                f"LoadBalancer {owner.key} has just been deleted at "
                f"{fresh.metadata.deletion_timestamp}"
            )


class DeploymentClaimManager:
    """Adopts and releases Deployments on behalf of one LoadBalancer."""

    def __init__(
        self,
        client: ClusterClient,
        owner: LoadBalancer,
        selector: dict[str, str],
        recheck_owner: Callable[[], None],
    ) -> None:
        self._client = client
        self._owner = owner
        self._selector = selector
        self._recheck_owner = recheck_owner
        self._errors: list[ClusterAPIError] = []

    def claim(self, deployments: Iterable[V1Deployment]) -> list[V1Deployment]:
        """Return the Deployments that belong to the owner.

        Raises:
            OwnerGoneError: The live recheck failed; nothing was claimed.
            ClaimError: Some adopt/release calls failed.
        """
        claimed: list[V1Deployment] = []
        self._errors = []

        for deployment in deployments:
            result = self._claim_one(deployment)
            if result is not None:
                claimed.append(result)

        if claimed:
            # Owned Deployments were matched against the cached UID only
            self._recheck_owner()
        if self._errors:
            raise ClaimError(self._errors)
        return claimed

    def _claim_one(self, deployment: V1Deployment) -> V1Deployment | None:
        owner = self._owner
        meta = deployment.metadata
        matches = labels_match(self._selector, meta.labels)

        ref = controller_ref_of(deployment)
        if ref is not None:
            if ref.uid != owner.uid:
                # Owned by another controller or a previous owner incarnation
                return None
            if matches:
                return deployment
            if owner.being_deleted:
                return None
            self._release(deployment)
            return None

        # Orphan
        if owner.being_deleted or not matches:
            return None
        if meta.deletion_timestamp is not None:
            return None
        return self._adopt(deployment)

    def _adopt(self, deployment: V1Deployment) -> V1Deployment | None:
        self._recheck_owner()

        owner = self._owner
        meta = deployment.metadata
        body: dict[str, Any] = {
            "metadata": {
                "ownerReferences": [
                    {
                        "apiVersion": LB_API_VERSION,
                        "kind": LB_KIND,
                        "name": owner.name,
                        "uid": owner.uid,
                        "controller": True,
                        "blockOwnerDeletion": True,
                    }
                ],
                "uid": meta.uid,
            }
        }
        logger.info(
            "Adopting orphan deployment",
            extra={"deployment": meta.name, "lb": owner.key},
        )
        try:
            return self._client.patch_deployment(meta.namespace, meta.name, body)
        except NotFoundError:
            return None
        except ClusterAPIError as e:
            self._errors.append(e)
            return None

    def _release(self, deployment: V1Deployment) -> None:
        self._recheck_owner()

        owner = self._owner
        meta = deployment.metadata
        body = {
            "metadata": {
                "ownerReferences": [{"$patch": "delete", "uid": owner.uid}],
                "uid": meta.uid,
            }
        }
        logger.info(
            "Releasing deployment that no longer matches",
            extra={"deployment": meta.name, "lb": owner.key},
        )
        try:
            self._client.patch_deployment(meta.namespace, meta.name, body)
        except NotFoundError:
            pass
        except ClusterAPIError as e:
            self._errors.append(e)


def claim_deployments(
    client: ClusterClient, lister: DeploymentLister, owner: LoadBalancer
) -> list[V1Deployment]:
    """List the owner's Deployments from the cache and claim them."""
    selector = selector_for(owner)
    candidates = lister.list(owner.namespace, selector)
    manager = DeploymentClaimManager(client, owner, selector, OwnerRecheck(client, owner))
    return manager.claim(candidates)
