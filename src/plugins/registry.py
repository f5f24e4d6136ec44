"""
Plugin Registry - the event sources the runtime can start.

Built-in sources (HTTP API, Kubernetes watch) are registered at startup;
third-party packages can contribute more through the ``hot_reconciler.inputs``
entry point group.
"""

import logging
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from typing import Any, Dict, Optional, Type

from plugins.inputs.base import InputPlugin

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "hot_reconciler.inputs"


@dataclass
class _Registration:
    plugin_class: Type[InputPlugin]
    env_config: Dict[str, Any] = field(default_factory=dict)
    instance: Optional[InputPlugin] = None


class PluginRegistry:
    """
    Keeps input plugin classes by name and hands out one initialized
    instance per name.
    """

    def __init__(self):
        self._registrations: Dict[str, _Registration] = {}

    def register_input_plugin(self, plugin_class: Type[InputPlugin]) -> None:
        """
        Register an input plugin class under its ``name``.

        The class is instantiated once to read its name and version, and its
        environment configuration is captured now.
        """
        plugin = plugin_class()
        if plugin.name in self._registrations:
            logger.warning(f"Replacing input plugin registered as '{plugin.name}'")

        self._registrations[plugin.name] = _Registration(
            plugin_class=plugin_class,
            env_config=plugin_class.load_config_from_env(),
        )
        logger.info(f"Registered input plugin: {plugin.name} v{plugin.version}")

    async def get_input_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> InputPlugin:
        """
        Return the plugin instance for ``name``, initializing it on first use.

        ``config`` only matters on that first call.

        Raises:
            ValueError: If no plugin is registered under ``name``
        """
        registration = self._registrations.get(name)
        if registration is None:
            known = ", ".join(self._registrations) or "none"
            raise ValueError(f"Unknown input plugin: {name}. Available plugins: {known}")

        if registration.instance is None:
            instance = registration.plugin_class()
            await instance.initialize(config or {})
            registration.instance = instance
        return registration.instance

    def list_input_plugins(self) -> list[str]:
        return list(self._registrations)

    def has_input_plugin(self, name: str) -> bool:
        return name in self._registrations

    def get_input_plugin_config(self, name: str) -> Dict[str, Any]:
        """Environment configuration captured at registration (a copy)."""
        registration = self._registrations.get(name)
        return dict(registration.env_config) if registration else {}


_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Return the process-wide registry, creating it on first use."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Forget every registration (used by tests)."""
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """Register the HTTP and Kubernetes sources, then any entry point plugins."""
    from plugins.inputs.http import HTTPInputPlugin
    from plugins.inputs.kubernetes import KubernetesWatchPlugin

    registry = get_registry()
    registry.register_input_plugin(HTTPInputPlugin)
    registry.register_input_plugin(KubernetesWatchPlugin)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register_input_plugin(ep.load())
        except Exception as e:
            logger.warning(f"Skipping input plugin '{ep.name}': {e}")
