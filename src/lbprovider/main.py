"""Provider host wiring: logging, registry, and the run loop.

The controller host owns the shared informers and may pass its cluster
client. It calls ``serve`` once the informer caches have synced; every
registered provider is initialized and run on its own thread until
SIGTERM/SIGINT or an explicit stop.
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from datetime import UTC, datetime

from .config import Config
from .kube import ClusterClient, load_kube_config
from .plugin import Plugin, ProviderRegistry
from .provider import AzureProvider
from .sources import InformerFactory

# Attributes of every LogRecord; anything else came in through ``extra``
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_registry() -> ProviderRegistry:
    """Registry with every provider this package ships."""
    registry = ProviderRegistry()
    registry.register(AzureProvider.name, AzureProvider())
    return registry


def _run_plugin(name: str, plugin: Plugin, stop_event: threading.Event) -> None:
    """Run one provider, stopping the host when it fails."""
    try:
        plugin.run(stop_event)
    except Exception:
        logging.getLogger(__name__).exception("Provider failed", extra={"provider": name})
        stop_event.set()


def run_providers(registry: ProviderRegistry, stop_event: threading.Event) -> None:
    """Run every registered provider until ``stop_event`` is set.

    A provider that fails sets ``stop_event`` and so stops the others.
    """
    logger = logging.getLogger(__name__)
    threads: list[threading.Thread] = []

    for name, plugin in registry:
        thread = threading.Thread(
            target=_run_plugin,
            args=(name, plugin, stop_event),
            name=f"provider-{name}",
            daemon=True,
        )
        threads.append(thread)
        thread.start()

    logger.info("Providers running", extra={"providers": registry.names()})
    stop_event.wait()
    for thread in threads:
        thread.join()
    logger.info("Providers stopped")


def serve(
    informers: InformerFactory,
    client: ClusterClient | None = None,
    config: Config | None = None,
    registry: ProviderRegistry | None = None,
    stop_event: threading.Event | None = None,
) -> ProviderRegistry:
    """Initialize and run all providers, blocking until stopped.

    Without a ``client`` one is built from the in-cluster configuration, or
    from the local kubeconfig outside a cluster.

    Must be called from the main thread when no ``stop_event`` is given, as
    it installs SIGTERM/SIGINT handlers.
    """
    config = config or Config.from_env()
    setup_logging(config.log_level_number)
    logger = logging.getLogger(__name__)

    if client is None:
        load_kube_config()
        client = ClusterClient()

    registry = registry or build_registry()
    registry.init_all(config, informers, client)

    if stop_event is None:
        stop_event = threading.Event()

        def signal_handler(signum: int, _frame: object) -> None:
            logger.info("Received signal", extra={"signal": signal.Signals(signum).name})
            stop_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, signal_handler)

    run_providers(registry, stop_event)
    return registry
