"""Reconciliation of the azure provider Deployment for one LoadBalancer.

Each sync pass:
1. Validates the queued LoadBalancer and looks it up in the cache
2. Cleans up when the LoadBalancer is gone or no longer requests the provider
3. Claims the Deployments that belong to the LoadBalancer
4. Keeps exactly one canonical Deployment in the desired shape and scales
   every other claimed Deployment to zero

Errors on the canonical path propagate so the work queue retries the pass.
Scaling down duplicates is best effort and never fails the pass.
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from typing import Any

from kubernetes.client import V1Deployment

from .claim import OwnerGoneError, claim_deployments
from .desired import canonical_prefix, generate_deployment
from .kube import PROPAGATION_FOREGROUND, ClusterAPIError, ClusterClient, NotFoundError
from .models import PROVIDER_NAME, LoadBalancer
from .sources import DeploymentLister, LoadBalancerLister

logger = logging.getLogger(__name__)

# Cascading delete of provider Deployments
DELETE_GRACE_PERIOD_SECONDS = 30
DELETE_PROPAGATION_POLICY = PROPAGATION_FOREGROUND


class CleanupError(Exception):
    """One or more provider Deployments could not be deleted."""

    def __init__(self, lb_key: str, errors: list[ClusterAPIError]) -> None:
        self.errors = errors
        details = "; ".join(str(e) for e in errors)
        super().__init__(f"cleanup of {lb_key} failed for {len(errors)} deployment(s): {details}")


@dataclass(frozen=True)
class DeploymentDiff:
    """Fields corrected on the canonical Deployment."""

    labels_changed: bool = False
    replicas_changed: bool = False
    image_changed: bool = False

    @property
    def changed(self) -> bool:
        return self.labels_changed or self.replicas_changed or self.image_changed


def _replicas(deployment: V1Deployment) -> int:
    # Unset replicas default to 1 on the API server
    replicas = deployment.spec.replicas
    return 1 if replicas is None else replicas


def ensure_deployment(
    desired: V1Deployment, current: V1Deployment
) -> tuple[V1Deployment, DeploymentDiff]:
    """Correct a copy of ``current`` towards ``desired``.

    Desired labels overwrite matching keys and unrelated labels are kept.
    Replicas and the agent image are forced to the desired values. Nothing
    else is touched.
    """
    updated = copy.deepcopy(current)

    labels = dict(updated.metadata.labels or {})
    labels.update(desired.metadata.labels or {})
    updated.metadata.labels = labels

    updated.spec.replicas = desired.spec.replicas

    desired_image = desired.spec.template.spec.containers[0].image
    current_image = current.spec.template.spec.containers[0].image
    updated.spec.template.spec.containers[0].image = desired_image

    diff = DeploymentDiff(
        labels_changed=labels != (current.metadata.labels or {}),
        replicas_changed=_replicas(updated) != _replicas(current),
        image_changed=desired_image != current_image,
    )
    return updated, diff


class AzureReconciler:
    """Drives the provider Deployments of LoadBalancers to the desired state.

    Cached objects are never modified: LoadBalancers are re-parsed into
    private models and Deployments are deep-copied before any change.
    """

    def __init__(
        self,
        client: ClusterClient,
        lb_lister: LoadBalancerLister,
        deployment_lister: DeploymentLister,
        image: str,
    ) -> None:
        self._client = client
        self._lb_lister = lb_lister
        self._deployment_lister = deployment_lister
        self._image = image

    @property
    def image(self) -> str:
        return self._image

    def sync_load_balancer(self, obj: Any) -> None:
        """Run one sync pass for a queued LoadBalancer object.

        Raises:
            InvalidLoadBalancerError: The object fails validation.
            ClusterAPIError: A canonical-path API call failed.
            ClaimError: Adopting or releasing a Deployment failed.
            CleanupError: Deleting provider Deployments failed.
        """
        lb = LoadBalancer.from_object(obj)
        start = time.monotonic()
        try:
            self._sync_load_balancer(lb)
        except OwnerGoneError as e:
            # Deleted owners leave their Deployments to the garbage collector,
            # a recreated owner brings its own event
            logger.info(
                "LoadBalancer is gone or changed identity during claim, skipping",
                extra={"lb": lb.key, "reason": str(e)},
            )
        finally:
            logger.debug(
                "Finished syncing azure provider",
                extra={"lb": lb.key, "elapsed_seconds": time.monotonic() - start},
            )

    def _sync_load_balancer(self, lb: LoadBalancer) -> None:
        cached = self._lb_lister.get(lb.namespace, lb.name)
        if cached is None:
            logger.warning("LoadBalancer has been deleted, clean up provider", extra={"lb": lb.key})
            self.cleanup(lb, clear_status=False)
            return

        fresh = LoadBalancer.from_object(cached)
        if lb.uid and fresh.uid != lb.uid:
            # Deleted and recreated under the same name
            return
        lb = fresh

        if not lb.requests_provider:
            # Not our responsibility any more, clean up legacies
            self.cleanup(lb, clear_status=True)
            return

        if lb.being_deleted:
            return

        deployments = claim_deployments(self._client, self._deployment_lister, lb)
        self._sync(lb, deployments)

    def _sync(self, lb: LoadBalancer, deployments: list[V1Deployment]) -> None:
        """Reconcile claimed Deployments against the desired Deployment."""
        desired = generate_deployment(lb, self._image)
        prefix = canonical_prefix(lb.name)

        # Listing order is arbitrary: when several Deployments carry the
        # canonical prefix, whichever comes first here is kept.
        found_canonical = False
        for deployment in deployments:
            if found_canonical or not deployment.metadata.name.startswith(prefix):
                self._scale_to_zero(lb, deployment)
                continue

            found_canonical = True
            if lb.is_static:
                continue

            updated, diff = ensure_deployment(desired, deployment)
            if not diff.changed:
                continue

            logger.info(
                "Correcting azure provider deployment",
                extra={
                    "lb": lb.key,
                    "deployment": deployment.metadata.name,
                    "labels_changed": diff.labels_changed,
                    "replicas_changed": diff.replicas_changed,
                    "image_changed": diff.image_changed,
                },
            )
            self._client.update_deployment(lb.namespace, updated)

        if not found_canonical:
            logger.info(
                "Creating azure provider deployment",
                extra={"lb": lb.key, "deployment": desired.metadata.name},
            )
            self._client.create_deployment(lb.namespace, desired)

    def _scale_to_zero(self, lb: LoadBalancer, deployment: V1Deployment) -> None:
        if _replicas(deployment) == 0:
            return

        logger.info(
            "Scaling unexpected provider deployment to zero",
            extra={"lb": lb.key, "deployment": deployment.metadata.name},
        )
        scaled = copy.deepcopy(deployment)
        scaled.spec.replicas = 0
        try:
            self._client.update_deployment(lb.namespace, scaled)
        except ClusterAPIError as e:
            logger.warning(
                "Failed to scale down unexpected provider deployment",
                extra={
                    "lb": lb.key,
                    "deployment": deployment.metadata.name,
                    "error": str(e),
                },
            )

    def cleanup(self, lb: LoadBalancer, clear_status: bool) -> None:
        """Delete every provider Deployment of ``lb``.

        Deployments that are already gone count as deleted. With
        ``clear_status`` the provider status of the LoadBalancer is removed
        as well.
        """
        deployments = claim_deployments(self._client, self._deployment_lister, lb)

        errors: list[ClusterAPIError] = []
        for deployment in deployments:
            meta = deployment.metadata
            logger.info(
                "Deleting azure provider deployment",
                extra={"lb": lb.key, "deployment": meta.name},
            )
            try:
                self._client.delete_deployment(
                    meta.namespace or lb.namespace,
                    meta.name,
                    grace_period_seconds=DELETE_GRACE_PERIOD_SECONDS,
                    propagation_policy=DELETE_PROPAGATION_POLICY,
                )
            except NotFoundError:
                continue
            except ClusterAPIError as e:
                errors.append(e)

        if errors:
            raise CleanupError(lb.key, errors)

        if clear_status:
            self._clear_status(lb)

    def _clear_status(self, lb: LoadBalancer) -> None:
        if not lb.has_provider_status:
            return

        logger.info("Deleting azure provider status", extra={"lb": lb.key})
        body = {"status": {"providersStatuses": {PROVIDER_NAME: None}}}
        try:
            self._client.patch_load_balancer_status(lb.namespace, lb.name, body)
        except NotFoundError:
            pass
