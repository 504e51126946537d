"""Mock cluster client with the same surface as ``lbprovider.kube.ClusterClient``."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes.client import V1Deployment, V1OwnerReference

from lbprovider.kube import ClusterAPIError, ConflictError, NotFoundError

from .state import MockClusterState


def _merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> None:
    """Apply a JSON merge patch in place (null removes a key)."""
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_patch(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class MockClusterClient:
    """Applies mutations to a MockClusterState and records every call.

    Errors can be injected per action, optionally narrowed to one object
    name. Injected errors stay active until ``clear_errors`` is called.
    """

    def __init__(self, state: MockClusterState | None = None) -> None:
        self.state = state or MockClusterState()
        self.calls: list[tuple[str, str, str]] = []
        self.delete_options: list[dict[str, Any]] = []
        self.status_patches: list[dict[str, Any]] = []
        self._errors: dict[tuple[str, str | None], ClusterAPIError] = {}

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject_error(self, action: str, error: ClusterAPIError, *, name: str | None = None) -> None:
        self._errors[(action, name)] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def mutations(self) -> list[tuple[str, str, str]]:
        """Recorded calls that write to the cluster."""
        return [call for call in self.calls if not call[0].startswith("get_")]

    def calls_for(self, action: str) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[0] == action]

    def _record(self, action: str, namespace: str, name: str) -> None:
        self.calls.append((action, namespace, name))
        error = self._errors.get((action, name)) or self._errors.get((action, None))
        if error is not None:
            raise error

    def _not_found(self, action: str, namespace: str, name: str) -> NotFoundError:
        return NotFoundError(f"{action} {namespace}/{name} failed: (404) Not Found", status=404)

    # -------------------------------------------------------------------------
    # LoadBalancers
    # -------------------------------------------------------------------------

    def get_load_balancer(self, namespace: str, name: str) -> dict[str, Any]:
        self._record("get_load_balancer", namespace, name)
        lb = self.state.live_load_balancer(namespace, name)
        if lb is None:
            raise self._not_found("get loadbalancer", namespace, name)
        return copy.deepcopy(lb)

    def patch_load_balancer_status(
        self, namespace: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self._record("patch_load_balancer_status", namespace, name)
        self.status_patches.append(copy.deepcopy(body))
        with self.state.lock:
            live = self.state.live_load_balancer(namespace, name)
            if live is None:
                raise self._not_found("patch loadbalancer status", namespace, name)
            _merge_patch(live, {"status": body.get("status", {})})
            cached = self.state.cached_load_balancer(namespace, name)
            if cached is not None:
                _merge_patch(cached, {"status": body.get("status", {})})
            return copy.deepcopy(live)

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    def create_deployment(self, namespace: str, body: V1Deployment) -> V1Deployment:
        name = body.metadata.name
        self._record("create_deployment", namespace, name)
        with self.state.lock:
            if self.state.get_deployment(namespace, name) is not None:
                raise ConflictError(
                    f"create deployment {namespace}/{name} failed: (409) AlreadyExists",
                    status=409,
                )
            stored = copy.deepcopy(body)
            stored.metadata.namespace = namespace
            stored.metadata.uid = self.state.new_uid()
            stored.metadata.resource_version = self.state.next_resource_version()
            self.state.add_deployment(stored)
            return copy.deepcopy(stored)

    def update_deployment(self, namespace: str, body: V1Deployment) -> V1Deployment:
        name = body.metadata.name
        self._record("update_deployment", namespace, name)
        with self.state.lock:
            current = self.state.get_deployment(namespace, name)
            if current is None:
                raise self._not_found("update deployment", namespace, name)
            version = body.metadata.resource_version
            if version and version != current.metadata.resource_version:
                raise ConflictError(
                    f"update deployment {namespace}/{name} failed: (409) Conflict",
                    status=409,
                )
            stored = copy.deepcopy(body)
            stored.metadata.resource_version = self.state.next_resource_version()
            self.state.add_deployment(stored)
            return copy.deepcopy(stored)

    def patch_deployment(self, namespace: str, name: str, body: dict[str, Any]) -> V1Deployment:
        self._record("patch_deployment", namespace, name)
        with self.state.lock:
            current = self.state.get_deployment(namespace, name)
            if current is None:
                raise self._not_found("patch deployment", namespace, name)

            meta_patch = body.get("metadata", {})
            uid = meta_patch.get("uid")
            if uid and uid != current.metadata.uid:
                raise ConflictError(
                    f"patch deployment {namespace}/{name} failed: (409) uid precondition",
                    status=409,
                )

            stored = copy.deepcopy(current)
            refs = list(stored.metadata.owner_references or [])
            for ref in meta_patch.get("ownerReferences", []):
                refs = [r for r in refs if r.uid != ref["uid"]]
                if ref.get("$patch") == "delete":
                    continue
                refs.append(
                    V1OwnerReference(
                        api_version=ref["apiVersion"],
                        kind=ref["kind"],
                        name=ref["name"],
                        uid=ref["uid"],
                        controller=ref.get("controller"),
                        block_owner_deletion=ref.get("blockOwnerDeletion"),
                    )
                )
            stored.metadata.owner_references = refs or None
            stored.metadata.resource_version = self.state.next_resource_version()
            self.state.add_deployment(stored)
            return copy.deepcopy(stored)

    def delete_deployment(
        self,
        namespace: str,
        name: str,
        *,
        grace_period_seconds: int,
        propagation_policy: str = "Foreground",
    ) -> None:
        self._record("delete_deployment", namespace, name)
        self.delete_options.append(
            {
                "name": name,
                "grace_period_seconds": grace_period_seconds,
                "propagation_policy": propagation_policy,
            }
        )
        with self.state.lock:
            if self.state.deployments.pop((namespace, name), None) is None:
                raise self._not_found("delete deployment", namespace, name)
