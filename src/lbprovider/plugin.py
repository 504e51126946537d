"""Provider plugin contract and registry.

Several providers share one controller host. Each implements the same
lifecycle (init, run, on_sync) and is looked up by name in a registry that
is filled once at process start and only read afterwards.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Any, Protocol

from .config import Config
from .kube import ClusterClient
from .sources import InformerFactory

logger = logging.getLogger(__name__)


class PluginNotInitializedError(RuntimeError):
    """Raised when a plugin is run before it was initialized."""

    pass


class DuplicatePluginError(ValueError):
    """Raised when two plugins register under the same name."""

    pass


class Plugin(Protocol):
    """Lifecycle shared by every provider."""

    def init(self, config: Config, informers: InformerFactory, client: ClusterClient) -> None:
        """Wire listers and event handlers. Idempotent; starts nothing."""
        ...

    def run(self, stop_event: threading.Event) -> None:
        """Start the workers and block until ``stop_event`` is set."""
        ...

    def on_sync(self, lb: Any) -> None:
        """Queue a LoadBalancer for syncing on behalf of another controller."""
        ...


class ProviderRegistry:
    """Plugins keyed by provider name."""

    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._lock = threading.Lock()

    def register(self, name: str, plugin: Plugin) -> None:
        with self._lock:
            if name in self._plugins:
                raise DuplicatePluginError(f"provider {name!r} is already registered")
            self._plugins[name] = plugin
        logger.info("Registered provider plugin", extra={"provider": name})

    def get(self, name: str) -> Plugin:
        """Return the plugin registered under ``name``.

        Raises:
            KeyError: If no plugin has that name.
        """
        with self._lock:
            plugin = self._plugins.get(name)
        if plugin is None:
            raise KeyError(f"Unknown provider {name!r}. Registered providers: {self.names()}")
        return plugin

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._plugins)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._plugins

    def __iter__(self) -> Iterator[tuple[str, Plugin]]:
        with self._lock:
            items = sorted(self._plugins.items())
        return iter(items)

    def init_all(self, config: Config, informers: InformerFactory, client: ClusterClient) -> None:
        for _, plugin in self:
            plugin.init(config, informers, client)

    def on_sync(self, lb: Any) -> None:
        """Fan an external sync trigger out to every provider."""
        for _, plugin in self:
            plugin.on_sync(lb)
