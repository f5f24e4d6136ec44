"""
HTTP Input Plugin - REST API for the reconciliation runtime.

This plugin provides a FastAPI-based API for reading and replacing the
reconciliation source, streaming reconciliation logs, and injecting resource
events by hand.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from code_store import CodeStoreError
from config import APIConfig
from dispatcher import EventDispatcher
from gateway import EditGateway, ValidationError
from logstream import LogBroadcaster
from plugins.inputs.base import InputPlugin, ResourceCallback
from resources import ResourceEvent

logger = logging.getLogger(__name__)


class CodeUpdate(BaseModel):
    """Request model for replacing the reconciliation source."""

    code: Optional[str] = Field(None, description="Complete reconciler source")


class CodeResponse(BaseModel):
    """Response model carrying the reconciliation source."""

    code: str


class WatchEventCreate(BaseModel):
    """Request model for injecting a watch-style resource event."""

    type: str = Field(..., description="ADDED, MODIFIED or DELETED", examples=["ADDED"])
    object: Dict[str, Any] = Field(..., description="The resource object")


class DispatcherStatusResponse(BaseModel):
    """Response model for the dispatcher state."""

    state: str
    queue_depth: int
    processed: int
    failed: int
    last_outcome: Optional[Dict[str, Any]] = None


async def log_stream(broadcaster: LogBroadcaster) -> AsyncIterator[str]:
    """
    Yield every record published from now on as an SSE ``log`` message.

    The subscription is released when the consumer stops iterating.
    """
    async with broadcaster.subscribe() as subscription:
        async for record in subscription:
            yield record.to_sse()


class HTTPInputPlugin(InputPlugin):
    """
    Serves code editing, the log stream and event injection over HTTP.

    Events posted to ``/api/v1/events`` go through the same callback as
    events from any other source.
    """

    def __init__(self):
        self.app: Optional[FastAPI] = None
        self.api = APIConfig()
        self.server: Optional[uvicorn.Server] = None
        self._on_resource_event: Optional[ResourceCallback] = None
        self._gateway: Optional[EditGateway] = None
        self._broadcaster: Optional[LogBroadcaster] = None
        self._dispatcher: Optional[EventDispatcher] = None

    @property
    def name(self) -> str:
        return "http"

    @property
    def version(self) -> str:
        return "1.0.0"

    @property
    def host(self) -> str:
        return self.api.host

    @property
    def port(self) -> int:
        return self.api.port

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        return asdict(APIConfig.from_env())

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Create the FastAPI app from an APIConfig-shaped dict."""
        settings = asdict(APIConfig())
        settings.update({k: v for k, v in config.items() if k in settings})
        self.api = APIConfig(**settings)

        self.app = FastAPI(
            title="Hot Reconciler API",
            description="Edit reconciliation logic at runtime and stream its logs",
            version=self.version,
        )
        if self.api.cors_enabled:
            self.app.add_middleware(
                CORSMiddleware,
                allow_origins=self.api.cors_origins,
                allow_methods=["GET", "POST"],
                allow_headers=["*"],
            )
        logger.info(f"HTTP API configured for {self.host}:{self.port}")

    def set_gateway(self, gateway: EditGateway) -> None:
        """Set the edit gateway instance."""
        self._gateway = gateway

    def set_log_broadcaster(self, broadcaster: LogBroadcaster) -> None:
        """Set the log broadcaster instance for streaming logs."""
        self._broadcaster = broadcaster

    def set_dispatcher(self, dispatcher: EventDispatcher) -> None:
        """Set the dispatcher instance for status reporting."""
        self._dispatcher = dispatcher

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes.

        Configures the following endpoints:
        - Health check: GET /
        - Reconciler source: GET/POST /api/code
        - Log stream: GET /api/logs
        - Event injection: POST /api/v1/events
        - Dispatcher status: GET /api/v1/dispatcher

        Raises:
            RuntimeError: If the FastAPI app has not been initialized
        """
        if not self.app:
            raise RuntimeError("App not initialized")

        @self.app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "hot-reconciler"}

        # ==================== Code Endpoints ====================

        @self.app.get("/api/code", response_model=CodeResponse)
        async def get_code():
            """Return the current reconciliation source."""
            if not self._gateway:
                return JSONResponse(
                    status_code=503, content={"error": "Code store not available"}
                )
            try:
                return {"code": self._gateway.get_current_source()}
            except Exception as e:
                logger.error(f"Failed to read code: {e}")
                return JSONResponse(
                    status_code=500, content={"error": "Failed to read code"}
                )

        @self.app.post("/api/code")
        async def update_code(update: CodeUpdate):
            """Replace the reconciliation source; it applies from the next event."""
            if not self._gateway:
                return JSONResponse(
                    status_code=503, content={"error": "Code store not available"}
                )
            try:
                await asyncio.to_thread(self._gateway.update_source, update.code)
            except ValidationError as e:
                status_code = 413 if e.too_large else 400
                return JSONResponse(status_code=status_code, content={"error": str(e)})
            except CodeStoreError as e:
                logger.error(f"Failed to save code: {e}")
                return JSONResponse(
                    status_code=500, content={"error": "Failed to save code"}
                )
            return {"success": True}

        # ==================== Log Streaming ====================

        @self.app.get("/api/logs")
        async def stream_logs():
            """SSE stream of reconciliation log lines on the ``log`` channel."""
            if not self._broadcaster:
                raise HTTPException(
                    status_code=503, detail="Log streaming not available"
                )

            return StreamingResponse(
                log_stream(self._broadcaster),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

        # ==================== Events ====================

        @self.app.post("/api/v1/events", status_code=202)
        async def inject_event(event: WatchEventCreate):
            """Queue a resource event for reconciliation."""
            if not self._on_resource_event:
                raise HTTPException(status_code=503, detail="Dispatcher not running")
            try:
                resource_event = ResourceEvent.from_watch(
                    {"type": event.type.upper(), "object": event.object}
                )
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))

            position = await self._on_resource_event(resource_event)
            logger.info(
                f"Injected {resource_event.event_type.value} event "
                f"for {resource_event.key}"
            )
            return {"queued": True, "position": position}

        @self.app.get("/api/v1/dispatcher", response_model=DispatcherStatusResponse)
        async def dispatcher_status():
            """Report the dispatcher state and counters."""
            if not self._dispatcher:
                raise HTTPException(status_code=503, detail="Dispatcher not available")
            last = self._dispatcher.last_outcome
            return {
                "state": self._dispatcher.state.value,
                "queue_depth": self._dispatcher.queue_depth,
                "processed": self._dispatcher.processed,
                "failed": self._dispatcher.failed,
                "last_outcome": last.to_dict() if last else None,
            }

    async def start(self, on_resource_event: ResourceCallback) -> None:
        """Serve the API with uvicorn until stop() is called."""
        self._on_resource_event = on_resource_event
        self._setup_routes()

        self.server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level=self.api.log_level.lower(),
            )
        )
        logger.info(f"Serving HTTP API on http://{self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        if self.server is not None:
            logger.info("Shutting down HTTP API")
            self.server.should_exit = True

    async def health_check(self) -> tuple[bool, str]:
        if self.server is not None and self.server.started:
            return True, f"Serving on {self.host}:{self.port}"
        return False, "HTTP API is not serving"
