"""
Input plugins are the runtime's sources of resource events and its outer
surfaces:
- http: code editing, log streaming, manual event injection
- kubernetes: watches a custom resource and writes its status back
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from resources import ResourceEvent

# Receives each event a plugin produces; returns the queue position
ResourceCallback = Callable[[ResourceEvent], Awaitable[Any]]


class InputPlugin(ABC):
    """
    Base class for event sources.

    The application calls ``initialize`` once, hands over the shared runtime
    objects through the ``set_*`` hooks, then runs ``start`` until ``stop``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key, e.g. 'http'."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Prepare the plugin.

        Args:
            config: Environment configuration merged with PLUGIN_CONFIGS
                overrides for this plugin
        """
        pass

    @abstractmethod
    async def start(self, on_resource_event: ResourceCallback) -> None:
        """
        Produce events until stopped.

        Args:
            on_resource_event: Awaited once per event, in arrival order
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> tuple[bool, str]:
        """Return (healthy, human readable detail)."""
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Settings read from the environment at registration time."""
        return {}

    def set_gateway(self, gateway: Any) -> None:
        """Receive the EditGateway; ignored by plugins that do not edit code."""

    def set_log_broadcaster(self, broadcaster: Any) -> None:
        """Receive the LogBroadcaster; ignored by plugins that do not stream logs."""

    def set_dispatcher(self, dispatcher: Any) -> None:
        """Receive the EventDispatcher; ignored by plugins that do not report on it."""
