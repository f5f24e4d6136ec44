"""
Entry point of the hot reconciler service.

Builds the runtime core (log broadcaster, code store, loader, edit gateway,
dispatcher), attaches the enabled input plugins and runs them all on one
event loop.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from code_store import CodeStore
from config import Config, get_config
from dispatcher import EventDispatcher
from gateway import EditGateway
from loader import ReconciliationLoader
from logstream import LogBroadcaster
from plugins.inputs.base import InputPlugin
from plugins.reconcilers.base import LoggingStatusWriter, StatusWriter
from plugins.registry import get_registry, register_builtin_plugins

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Application:
    """The assembled runtime and its input plugins."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.broadcaster: Optional[LogBroadcaster] = None
        self.code_store: Optional[CodeStore] = None
        self.loader: Optional[ReconciliationLoader] = None
        self.gateway: Optional[EditGateway] = None
        self.dispatcher: Optional[EventDispatcher] = None
        self.input_plugins: List[InputPlugin] = []
        self.running = False

    async def initialize(self):
        """Build the core, then the plugins, then the dispatcher."""
        self.broadcaster = LogBroadcaster(
            queue_size=self.config.logstream.subscriber_queue_size
        )
        self.code_store = CodeStore(
            path=self.config.code_store.path, broadcaster=self.broadcaster
        )
        self.code_store.load()
        self.loader = ReconciliationLoader(self.code_store, self.broadcaster)
        self.gateway = EditGateway(
            self.code_store, max_source_bytes=self.config.code_store.max_source_bytes
        )

        await self._load_plugins()

        self.dispatcher = EventDispatcher(
            loader=self.loader,
            broadcaster=self.broadcaster,
            status_writer=self._pick_status_writer(),
            queue_size=self.config.dispatcher.queue_size,
        )
        for plugin in self.input_plugins:
            plugin.set_dispatcher(self.dispatcher)

        logger.info(
            f"Hot reconciler ready with plugins: "
            f"{', '.join(p.name for p in self.input_plugins) or 'none'}"
        )

    async def _load_plugins(self) -> None:
        register_builtin_plugins()
        registry = get_registry()
        wanted = (
            self.config.plugins.enabled_input_plugins
            or registry.list_input_plugins()
        )

        for name in wanted:
            if not registry.has_input_plugin(name):
                logger.warning(f"No input plugin named '{name}', ignoring it")
                continue
            # Explicit plugin_configs win over values read from the environment
            plugin_config = registry.get_input_plugin_config(name)
            plugin_config.update(self.config.plugins.get_plugin_config(name))

            plugin = await registry.get_input_plugin(name, plugin_config)
            plugin.set_gateway(self.gateway)
            plugin.set_log_broadcaster(self.broadcaster)
            self.input_plugins.append(plugin)

    def _pick_status_writer(self) -> StatusWriter:
        """The first plugin able to persist status owns status writes."""
        for plugin in self.input_plugins:
            writer = getattr(plugin, "status_writer", None)
            if writer is not None:
                logger.info(f"Status updates are written by the {plugin.name} plugin")
                return writer
        logger.info("No status writer available; status updates are only logged")
        return LoggingStatusWriter(self.broadcaster)

    async def start(self):
        """Run the dispatcher and every input plugin until they finish."""
        if self.dispatcher is None:
            await self.initialize()

        self.running = True
        self.broadcaster.info("Starting operator...")

        workers = [asyncio.create_task(self.dispatcher.start())]
        workers.extend(
            asyncio.create_task(plugin.start(self.dispatcher.submit))
            for plugin in self.input_plugins
        )
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            logger.info("Runtime tasks cancelled")

    async def stop(self):
        """Stop the plugins first so no new events arrive, then the dispatcher."""
        if not self.running:
            return
        self.running = False
        logger.info("Shutting down hot reconciler")

        for plugin in self.input_plugins:
            await plugin.stop()
        if self.dispatcher is not None:
            await self.dispatcher.stop()


async def main():
    config = get_config()
    logging.basicConfig(level=config.api.log_level.upper(), format=LOG_FORMAT)
    app = Application(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(app.stop()))

    try:
        await app.start()
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
