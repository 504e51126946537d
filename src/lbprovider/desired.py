"""Desired-state generation for the azure provider Deployment.

``generate_deployment`` maps a LoadBalancer to the fully specified
Deployment that should run the provider agent. Apart from the random name
suffix the output depends only on the LoadBalancer and the configured image.
"""

from __future__ import annotations

import random
import string

from kubernetes.client import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1DeploymentStrategy,
    V1EnvVar,
    V1EnvVarSource,
    V1LabelSelector,
    V1ObjectFieldSelector,
    V1ObjectMeta,
    V1OwnerReference,
    V1PodSpec,
    V1PodTemplateSpec,
    V1ResourceRequirements,
    V1Toleration,
)

from .models import LB_API_VERSION, LB_GROUP, LB_KIND, PROVIDER_NAME, LoadBalancer

# Labels carried by every managed Deployment
LABEL_KEY_CREATED_BY = "created-by"
LABEL_KEY_PROVIDER = "provider"
LABEL_VALUE_FORMAT_CREATED_BY = "{name}@{namespace}"

PROVIDER_NAME_SUFFIX = f"-provider-{PROVIDER_NAME}"
NAME_SUFFIX_LENGTH = 5
NAME_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

DEFAULT_REPLICAS = 1
TERMINATION_GRACE_PERIOD_SECONDS = 300

# Agent container resources
CPU_REQUEST = "100m"
MEMORY_REQUEST = "50Mi"
CPU_LIMIT = "200m"
MEMORY_LIMIT = "100Mi"

# Taints put on dedicated load balancer and control plane nodes
DEDICATED_TAINT_KEY = f"{LB_GROUP}/dedicated"
CONTROL_PLANE_TAINT_KEYS = (
    "node-role.kubernetes.io/master",
    "node-role.kubernetes.io/control-plane",
)


def selector_for(lb: LoadBalancer) -> dict[str, str]:
    """Labels identifying the provider Deployments of ``lb``."""
    return {
        LABEL_KEY_CREATED_BY: LABEL_VALUE_FORMAT_CREATED_BY.format(
            name=lb.name, namespace=lb.namespace
        ),
        LABEL_KEY_PROVIDER: PROVIDER_NAME,
    }


def provider_selector() -> dict[str, str]:
    """Labels shared by every Deployment of this provider."""
    return {LABEL_KEY_PROVIDER: PROVIDER_NAME}


def canonical_prefix(lb_name: str) -> str:
    return lb_name + PROVIDER_NAME_SUFFIX


def random_suffix(length: int = NAME_SUFFIX_LENGTH) -> str:
    # Collision avoidance only, not a security boundary
    return "".join(random.choices(NAME_SUFFIX_ALPHABET, k=length))  # noqa: S311


def controller_ref(lb: LoadBalancer) -> V1OwnerReference:
    return V1OwnerReference(
        api_version=LB_API_VERSION,
        kind=LB_KIND,
        name=lb.name,
        uid=lb.uid,
        controller=True,
        block_owner_deletion=True,
    )


def generate_tolerations() -> list[V1Toleration]:
    """Tolerate the taints of dedicated and control plane nodes."""
    tolerations = [
        V1Toleration(key=DEDICATED_TAINT_KEY, operator="Exists", effect="NoSchedule"),
        V1Toleration(key=DEDICATED_TAINT_KEY, operator="Exists", effect="NoExecute"),
    ]
    tolerations.extend(
        V1Toleration(key=key, operator="Exists", effect="NoSchedule")
        for key in CONTROL_PLANE_TAINT_KEYS
    )
    return tolerations


def _field_env(name: str, field_path: str) -> V1EnvVar:
    return V1EnvVar(
        name=name,
        value_from=V1EnvVarSource(field_ref=V1ObjectFieldSelector(field_path=field_path)),
    )


def generate_deployment(lb: LoadBalancer, image: str) -> V1Deployment:
    """Build the desired provider Deployment for ``lb``.

    The strategy is Recreate: the agent cannot run two instances side by
    side, so the old pod must be gone before the new one starts.
    """
    labels = selector_for(lb)

    container = V1Container(
        name=PROVIDER_NAME,
        image=image,
        image_pull_policy="Always",
        resources=V1ResourceRequirements(
            requests={"cpu": CPU_REQUEST, "memory": MEMORY_REQUEST},
            limits={"cpu": CPU_LIMIT, "memory": MEMORY_LIMIT},
        ),
        env=[
            _field_env("POD_NAME", "metadata.name"),
            _field_env("POD_NAMESPACE", "metadata.namespace"),
            V1EnvVar(name="LOADBALANCER_NAMESPACE", value=lb.namespace),
            V1EnvVar(name="LOADBALANCER_NAME", value=lb.name),
        ],
    )

    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(
            name=f"{canonical_prefix(lb.name)}-{random_suffix()}",
            namespace=lb.namespace,
            labels=dict(labels),
            owner_references=[controller_ref(lb)],
        ),
        spec=V1DeploymentSpec(
            replicas=DEFAULT_REPLICAS,
            strategy=V1DeploymentStrategy(type="Recreate"),
            selector=V1LabelSelector(match_labels=dict(labels)),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=dict(labels)),
                spec=V1PodSpec(
                    termination_grace_period_seconds=TERMINATION_GRACE_PERIOD_SECONDS,
                    tolerations=generate_tolerations(),
                    containers=[container],
                ),
            ),
        ),
    )
