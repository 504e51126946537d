"""In-memory Kubernetes fakes for provider tests.

This package stands in for the API server, the informer caches and the
cluster client so the reconciler can be driven end to end without a
cluster.

Key Features:
- Separate live and cached views of LoadBalancers to simulate stale caches
- Resource versions bumped on every write, with optimistic concurrency
- Owner reference patches applied the way strategic merge patch does
- Error injection per action and object name
- Recorded mutation calls for assertions

Usage:
    from kube_mock import MockClusterClient, MockClusterState, make_lb

    state = MockClusterState()
    state.add_load_balancer(make_lb("lb1", "ns"))
    client = MockClusterClient(state)

    reconciler = AzureReconciler(client, ...)
    reconciler.sync_load_balancer(make_lb("lb1", "ns"))

    assert len(state.list_deployments("ns")) == 1
"""

from .builders import make_deployment, make_lb
from .client import MockClusterClient
from .informers import (
    MockDeploymentInformer,
    MockDeploymentLister,
    MockInformerFactory,
    MockLoadBalancerInformer,
    MockLoadBalancerLister,
    RecordingQueue,
)
from .state import MockClusterState

__all__ = [
    "MockClusterClient",
    "MockClusterState",
    "MockDeploymentInformer",
    "MockDeploymentLister",
    "MockInformerFactory",
    "MockLoadBalancerInformer",
    "MockLoadBalancerLister",
    "RecordingQueue",
    "make_deployment",
    "make_lb",
]
