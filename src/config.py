"""
Runtime configuration, read from environment variables.

Each concern has its own dataclass section with a ``from_env()`` constructor;
``Config`` bundles them. Invalid numbers fail fast with ``ValueError``.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ONE_MIB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_list(name: str) -> List[str]:
    """Comma separated values; blanks are ignored."""
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class CodeStoreConfig:
    """Where the reconciliation source is kept."""

    path: Optional[str] = "reconciler.py"  # None keeps the source in memory only
    max_source_bytes: int = ONE_MIB

    @classmethod
    def from_env(cls):
        return cls(
            path=os.getenv("CODE_STORE_PATH", "reconciler.py") or None,
            max_source_bytes=_env_int("MAX_SOURCE_BYTES", ONE_MIB),
        )


@dataclass
class DispatcherConfig:
    """Event queue sizing."""

    queue_size: int = 0  # 0 = unbounded

    @classmethod
    def from_env(cls):
        queue_size = _env_int("DISPATCH_QUEUE_SIZE", 0)
        if queue_size < 0:
            raise ValueError("DISPATCH_QUEUE_SIZE cannot be negative")
        return cls(queue_size=queue_size)


@dataclass
class LogStreamConfig:
    """Per-subscriber buffering of the log stream."""

    subscriber_queue_size: int = 256

    @classmethod
    def from_env(cls):
        size = _env_int("LOG_SUBSCRIBER_QUEUE_SIZE", 256)
        if size <= 0:
            raise ValueError("LOG_SUBSCRIBER_QUEUE_SIZE must be positive")
        return cls(subscriber_queue_size=size)


@dataclass
class APIConfig:
    """HTTP API server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    cors_enabled: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls):
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", 3000),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_enabled=os.getenv("CORS_ENABLED", "false").lower() == "true",
            cors_origins=_env_list("CORS_ORIGINS") or ["*"],
        )


@dataclass
class WatchConfig:
    """The custom resource to watch and how to reach the API server."""

    api_server: str = "http://127.0.0.1:8001"  # kubectl proxy
    group: str = "example.com"
    version: str = "v1"
    plural: str = "myresources"
    namespace: str = ""  # empty = all namespaces
    reconnect_delay: float = 5.0
    timeout_seconds: int = 300

    @classmethod
    def from_env(cls):
        return cls(
            api_server=os.getenv("K8S_API_SERVER", cls.api_server).rstrip("/"),
            group=os.getenv("WATCH_GROUP", cls.group),
            version=os.getenv("WATCH_VERSION", cls.version),
            plural=os.getenv("WATCH_PLURAL", cls.plural),
            namespace=os.getenv("WATCH_NAMESPACE", ""),
            reconnect_delay=float(os.getenv("WATCH_RECONNECT_DELAY", "5")),
            timeout_seconds=_env_int("WATCH_TIMEOUT_SECONDS", 300),
        )


@dataclass
class PluginConfig:
    """Which input plugins run, and overrides for their settings."""

    enabled_input_plugins: List[str] = field(default_factory=list)  # empty = all
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        raw = os.getenv("PLUGIN_CONFIGS")
        plugin_configs: Dict[str, Dict[str, Any]] = {}
        if raw:
            try:
                plugin_configs = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring invalid PLUGIN_CONFIGS: {e}")
        return cls(
            enabled_input_plugins=_env_list("ENABLED_INPUT_PLUGINS"),
            plugin_configs=plugin_configs,
        )

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        return self.plugin_configs.get(plugin_name, {})


@dataclass
class Config:
    """All configuration sections."""

    code_store: CodeStoreConfig = field(default_factory=CodeStoreConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    logstream: LogStreamConfig = field(default_factory=LogStreamConfig)
    api: APIConfig = field(default_factory=APIConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    plugins: PluginConfig = field(default_factory=PluginConfig)

    @classmethod
    def from_env(cls):
        return cls(
            code_store=CodeStoreConfig.from_env(),
            dispatcher=DispatcherConfig.from_env(),
            logstream=LogStreamConfig.from_env(),
            api=APIConfig.from_env(),
            watch=WatchConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )


config: Optional[Config] = None


def load_config() -> Config:
    """Read the environment once; later calls return the same object."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    return load_config()


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    global config
    config = None
