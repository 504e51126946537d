"""Thin wrapper around the Kubernetes API used to mutate cluster state.

Every call goes straight to the API server (no cache). Client errors are
translated into ClusterAPIError and its subclasses so callers can tell
"already gone" and "conflict" apart from transient failures without
depending on the client library's exception types.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException, V1DeleteOptions, V1Deployment
from urllib3.exceptions import HTTPError

from .models import LB_GROUP, LB_PLURAL, LB_VERSION

logger = logging.getLogger(__name__)

# Cascading delete that waits for dependents
PROPAGATION_FOREGROUND = "Foreground"


class ClusterAPIError(Exception):
    """Raised when a call against the Kubernetes API fails."""

    def __init__(self, message: str, *, status: int = 0, reason: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class NotFoundError(ClusterAPIError):
    """The object does not exist (HTTP 404)."""

    pass


class ConflictError(ClusterAPIError):
    """Optimistic concurrency conflict or already exists (HTTP 409)."""

    pass


def is_not_found(error: BaseException) -> bool:
    return isinstance(error, NotFoundError)


@contextmanager
def _translate_errors(action: str, namespace: str, name: str) -> Generator[None, None, None]:
    try:
        yield
    except ApiException as e:
        message = f"{action} {namespace}/{name} failed: ({e.status}) {e.reason}"
        if e.status == 404:
            raise NotFoundError(message, status=404, reason=e.reason or "") from e
        if e.status == 409:
            raise ConflictError(message, status=409, reason=e.reason or "") from e
        raise ClusterAPIError(message, status=e.status or 0, reason=e.reason or "") from e
    except HTTPError as e:
        raise ClusterAPIError(f"{action} {namespace}/{name} failed: {e}") from e


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


class ClusterClient:
    """Synchronous cluster mutation API used by the reconciler."""

    def __init__(
        self,
        apps_api: client.AppsV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
    ) -> None:
        self._apps = apps_api or client.AppsV1Api()
        self._custom = custom_api or client.CustomObjectsApi()

    # -------------------------------------------------------------------------
    # LoadBalancers
    # -------------------------------------------------------------------------

    def get_load_balancer(self, namespace: str, name: str) -> dict[str, Any]:
        """Live read of a LoadBalancer, bypassing any cache."""
        with _translate_errors("get loadbalancer", namespace, name):
            return self._custom.get_namespaced_custom_object(
                LB_GROUP, LB_VERSION, namespace, LB_PLURAL, name
            )

    def patch_load_balancer_status(
        self, namespace: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge-patch the status subresource of a LoadBalancer."""
        with _translate_errors("patch loadbalancer status", namespace, name):
            return self._custom.patch_namespaced_custom_object_status(
                LB_GROUP, LB_VERSION, namespace, LB_PLURAL, name, body
            )

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    def create_deployment(self, namespace: str, body: V1Deployment) -> V1Deployment:
        with _translate_errors("create deployment", namespace, body.metadata.name):
            return self._apps.create_namespaced_deployment(namespace, body)

    def update_deployment(self, namespace: str, body: V1Deployment) -> V1Deployment:
        """Replace a Deployment. Gated on body.metadata.resource_version."""
        name = body.metadata.name
        with _translate_errors("update deployment", namespace, name):
            return self._apps.replace_namespaced_deployment(name, namespace, body)

    def patch_deployment(self, namespace: str, name: str, body: dict[str, Any]) -> V1Deployment:
        """Strategic-merge-patch a Deployment."""
        with _translate_errors("patch deployment", namespace, name):
            return self._apps.patch_namespaced_deployment(name, namespace, body)

    def delete_deployment(
        self,
        namespace: str,
        name: str,
        *,
        grace_period_seconds: int,
        propagation_policy: str = PROPAGATION_FOREGROUND,
    ) -> None:
        options = V1DeleteOptions(
            grace_period_seconds=grace_period_seconds,
            propagation_policy=propagation_policy,
        )
        with _translate_errors("delete deployment", namespace, name):
            self._apps.delete_namespaced_deployment(name, namespace, body=options)
