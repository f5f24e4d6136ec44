"""
Kubernetes Input Plugin - watch a custom resource through the API server.

Streams ``?watch=true`` responses (one JSON event per line) and hands every
ADDED, MODIFIED and DELETED event to the dispatcher in arrival order. Status
updates requested by reconciliation code are written to the ``/status``
subresource with a JSON merge patch.

Authentication is out of scope: point ``api_server`` at ``kubectl proxy`` or
an equivalent authenticating proxy.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

import aiohttp

from config import WatchConfig
from plugins.inputs.base import InputPlugin, ResourceCallback
from plugins.reconcilers.base import StatusWriter
from resources import ResourceEvent, ResourceObject

logger = logging.getLogger(__name__)


class StatusWriteError(Exception):
    """Raised when the API server rejects a status update."""


def resource_path(
    group: str, version: str, plural: str, namespace: Optional[str] = None
) -> str:
    """Build the API path of a custom resource collection."""
    prefix = f"/apis/{group}/{version}"
    if namespace:
        return f"{prefix}/namespaces/{namespace}/{plural}"
    return f"{prefix}/{plural}"


class KubernetesStatusWriter(StatusWriter):
    """Writes status through the custom resource's status subresource."""

    def __init__(
        self,
        api_server: str,
        group: str,
        version: str,
        plural: str,
        timeout_seconds: float = 30,
    ):
        self.api_server = api_server.rstrip("/")
        self.group = group
        self.version = version
        self.plural = plural
        self.timeout_seconds = timeout_seconds

    def status_url(self, resource: ResourceObject) -> str:
        path = resource_path(self.group, self.version, self.plural, resource.namespace)
        return f"{self.api_server}{path}/{resource.name}/status"

    async def write_status(
        self, resource: ResourceObject, status: Dict[str, Any]
    ) -> None:
        """
        Merge-patch ``status`` into the resource's status.

        Raises:
            StatusWriteError: If the API server answers with an error status.
        """
        url = self.status_url(resource)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.patch(
                url,
                data=json.dumps({"status": status}, default=str),
                headers={"Content-Type": "application/merge-patch+json"},
            ) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise StatusWriteError(
                        f"Status update for {resource.namespace}/{resource.name} "
                        f"failed: {response.status} - {error_text}"
                    )

        logger.info(f"Updated status of {resource.namespace}/{resource.name}")


class KubernetesWatchPlugin(InputPlugin):
    """
    Input plugin that watches one custom resource kind.

    Reconnects after ``reconnect_delay`` seconds whenever the watch stream
    ends or fails, resuming from the last seen resource version.
    """

    def __init__(self):
        self.watch = WatchConfig()
        self.resource_version: Optional[str] = None
        self.status_writer: Optional[KubernetesStatusWriter] = None
        self.running = False
        self.connected = False
        self._shutdown_event = asyncio.Event()

    @property
    def name(self) -> str:
        return "kubernetes"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load the watch target from environment variables."""
        return asdict(WatchConfig.from_env())

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the watch target and the status writer."""
        defaults = asdict(WatchConfig())
        defaults.update({k: v for k, v in config.items() if k in defaults})
        self.watch = WatchConfig(**defaults)
        self.status_writer = KubernetesStatusWriter(
            api_server=self.watch.api_server,
            group=self.watch.group,
            version=self.watch.version,
            plural=self.watch.plural,
        )
        logger.info(
            f"Kubernetes input plugin watching {self.watch.plural}."
            f"{self.watch.group}/{self.watch.version} via {self.watch.api_server}"
        )

    def watch_url(self) -> str:
        path = resource_path(
            self.watch.group,
            self.watch.version,
            self.watch.plural,
            self.watch.namespace or None,
        )
        return f"{self.watch.api_server}{path}"

    def watch_params(self) -> Dict[str, str]:
        params = {
            "watch": "true",
            "allowWatchBookmarks": "true",
            "timeoutSeconds": str(self.watch.timeout_seconds),
        }
        if self.resource_version:
            params["resourceVersion"] = self.resource_version
        return params

    async def start(self, on_resource_event: ResourceCallback) -> None:
        """Watch until stop() is called."""
        self.running = True
        self._shutdown_event.clear()
        logger.info(f"Starting Kubernetes watch on {self.watch_url()}")

        while self.running:
            try:
                await self._watch_once(on_resource_event)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Watch stream failed: {e}")
            finally:
                self.connected = False

            if not self.running:
                break
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self.watch.reconnect_delay
                )
            except asyncio.TimeoutError:
                pass

        logger.info("Kubernetes watch stopped")

    async def _watch_once(self, on_resource_event: ResourceCallback) -> None:
        timeout = aiohttp.ClientTimeout(
            total=None, sock_read=self.watch.timeout_seconds + 30
        )
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(
                self.watch_url(), params=self.watch_params()
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    if response.status == 410:
                        self.resource_version = None
                    raise aiohttp.ClientError(
                        f"Watch request failed: {response.status} - {error_text}"
                    )
                self.connected = True
                async for line in response.content:
                    if not self.running:
                        break
                    await self.handle_line(line, on_resource_event)

    async def handle_line(
        self, line: bytes, on_resource_event: ResourceCallback
    ) -> None:
        """
        Process one line of the watch stream.

        Bookmarks only advance the resource version; an ERROR event (e.g.
        410 Gone) resets it so the next watch starts from a fresh list.
        """
        line = line.strip()
        if not line:
            return
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed watch line: {e}")
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring watch line that is not a JSON object")
            return

        event_type = data.get("type")
        obj = data.get("object")
        if not isinstance(obj, dict):
            obj = {}
        if event_type == "BOOKMARK":
            metadata = obj.get("metadata")
            if isinstance(metadata, dict) and metadata.get("resourceVersion"):
                self.resource_version = metadata["resourceVersion"]
            return
        if event_type == "ERROR":
            logger.warning(
                f"Watch error from API server: {obj.get('code')} {obj.get('message')}"
            )
            self.resource_version = None
            return

        try:
            event = ResourceEvent.from_watch(data)
        except ValueError as e:
            logger.warning(f"Ignoring watch event: {e}")
            return

        if event.resource.metadata.resource_version:
            self.resource_version = event.resource.metadata.resource_version
        await on_resource_event(event)

    async def stop(self) -> None:
        """Stop watching."""
        logger.info("Stopping Kubernetes input plugin")
        self.running = False
        self._shutdown_event.set()

    async def health_check(self) -> tuple[bool, str]:
        """Check if the watch stream is connected."""
        if self.connected:
            return True, "Watch stream connected"
        return False, "Watch stream not connected"
