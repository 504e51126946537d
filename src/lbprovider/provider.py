"""Azure provider plugin: lifecycle wiring around the reconciler."""

from __future__ import annotations

import logging
import threading
from typing import Any

from kubernetes.client import V1Deployment

from .config import Config
from .desired import provider_selector
from .events import DeploymentEventHandler, LoadBalancerEventHandler
from .kube import ClusterClient
from .models import PROVIDER_NAME, load_balancer_key
from .plugin import PluginNotInitializedError
from .reconciler import AzureReconciler
from .sources import InformerFactory, labels_match
from .workqueue import SyncQueue

logger = logging.getLogger(__name__)


def deployment_filtered(deployment: V1Deployment) -> bool:
    """True for Deployments that do not carry this provider's label."""
    return not labels_match(provider_selector(), deployment.metadata.labels)


class AzureProvider:
    """Manages the azure provider agent Deployment of every LoadBalancer."""

    name = PROVIDER_NAME

    def __init__(self) -> None:
        self._initialized = False
        self._lock = threading.Lock()
        self._config: Config | None = None
        self._reconciler: AzureReconciler | None = None
        self._queue: SyncQueue | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def reconciler(self) -> AzureReconciler | None:
        return self._reconciler

    @property
    def queue(self) -> SyncQueue | None:
        return self._queue

    def init(self, config: Config, informers: InformerFactory, client: ClusterClient) -> None:
        with self._lock:
            if self._initialized:
                return

            logger.info("Initializing azure provider", extra={"image": config.azure_image})

            lb_informer = informers.load_balancers()
            deployment_informer = informers.deployments()

            reconciler = AzureReconciler(
                client=client,
                lb_lister=lb_informer.lister,
                deployment_lister=deployment_informer.lister,
                image=config.azure_image,
            )
            queue = SyncQueue(
                reconciler.sync_load_balancer,
                retry_policy=config.retry_policy(),
                name=PROVIDER_NAME,
            )

            deployment_informer.add_event_handler(
                DeploymentEventHandler(lb_informer.lister, queue, deployment_filtered)
            )
            lb_informer.add_event_handler(LoadBalancerEventHandler(queue))

            self._config = config
            self._reconciler = reconciler
            self._queue = queue
            # Set last, a failed init can be retried
            self._initialized = True

    def run(self, stop_event: threading.Event) -> None:
        if not self._initialized or self._queue is None or self._config is None:
            raise PluginNotInitializedError("initialize the azure provider before running it")

        workers = self._config.workers
        logger.info(
            "Starting azure provider",
            extra={"workers": workers, "image": self._config.azure_image},
        )

        # The host waits for informer caches to sync before running providers
        self._queue.run(workers)
        try:
            stop_event.wait()
        finally:
            logger.info("Shutting down azure provider")
            self._queue.shut_down()

    def on_sync(self, lb: Any) -> None:
        if self._queue is None:
            raise PluginNotInitializedError("initialize the azure provider before syncing")
        logger.info(
            "Syncing provider, triggered by lb controller",
            extra={"lb": load_balancer_key(lb)},
        )
        self._queue.enqueue(lb)
