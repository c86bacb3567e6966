"""
API server for ingestion status and metrics endpoints.

Provides HTTP endpoints for:
- /chain_ingest/v0/health - Health check endpoint
- /chain_ingest/v0/sync - Progress of the current ingestion run
- /metrics - Prometheus metrics endpoint
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final

from aiohttp import web

from chain_ingest.subspecs.metrics import generate_metrics

logger = logging.getLogger(__name__)

CHARSET: Final = "utf-8"
"""Character encoding for Prometheus metrics."""

ProgressGetter = Callable[[], dict[str, Any] | None]
"""Returns a JSON-ready progress snapshot, or None before the run is wired up."""


def _no_progress() -> dict[str, Any] | None:
    """Default progress getter that returns None."""
    return None


async def _handle_health(_request: web.Request) -> web.Response:
    """Handle health check endpoint."""
    return web.json_response({"status": "healthy", "service": "chain-ingest"})


async def _handle_metrics(_request: web.Request) -> web.Response:
    """Handle Prometheus metrics endpoint."""
    return web.Response(
        body=generate_metrics(),
        content_type="text/plain; version=0.0.4",
        charset=CHARSET,
    )


@dataclass(frozen=True, slots=True)
class ApiServerConfig:
    """Configuration for the API server."""

    host: str = "127.0.0.1"
    """Host address to bind to."""

    port: int = 5058
    """Port to listen on."""

    enabled: bool = True
    """Whether the API server is enabled."""


@dataclass(slots=True)
class ApiServer:
    """
    HTTP API server exposing ingestion status.

    Read-only: nothing served here changes scheduler or queue behavior.
    """

    config: ApiServerConfig
    """Server configuration."""

    progress_getter: ProgressGetter = _no_progress
    """Callable that returns the current progress snapshot."""

    _runner: web.AppRunner | None = field(default=None, init=False)
    """The aiohttp application runner."""

    _site: web.TCPSite | None = field(default=None, init=False)
    """The TCP site for the server."""

    @property
    def is_running(self) -> bool:
        """Check if the server is accepting connections."""
        return self._runner is not None

    async def start(self) -> None:
        """Start the API server in the background."""
        if not self.config.enabled:
            logger.info("API server is disabled")
            return

        app = web.Application()
        app.add_routes(
            [
                web.get("/chain_ingest/v0/health", _handle_health),
                web.get("/chain_ingest/v0/sync", self._handle_sync),
                web.get("/metrics", _handle_metrics),
            ]
        )

        self._runner = web.AppRunner(app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info("API server listening on %s:%d", self.config.host, self.config.port)

    async def shutdown(self) -> None:
        """Stop the server and wait until the listening socket is released."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("API server stopped")

    async def _handle_sync(self, _request: web.Request) -> web.Response:
        """
        Handle sync progress endpoint.

        Response format:
        {
            "running": <bool>,
            "targetHeight": <height or null>,
            "storeMaxHeight": <height or null>,
            "heightsScheduled": <count>,
            "jobsSubmitted": <count>,
            "chunksAdmitted": <count>,
            "passesCompleted": <count>,
            "backpressureState": "<state>",
            "queueDepth": <depth or null>
        }
        """
        progress = self.progress_getter()
        if progress is None:
            raise web.HTTPServiceUnavailable(reason="Sync not initialized")
        return web.json_response(progress)
