"""
Health and stats endpoints for the collector process.

Provides Kubernetes-compatible probes plus the stats surface:
- /health/live - Liveness probe (is the process running?)
- /health/ready - Readiness probe (has the fleet converged?)
- /stats - Per-Pod stats and sink connectivity

The server runs on the collector's own event loop so handlers read the
supervisor's state without locking.

Usage:
    health_server = HealthCheckServer(supervisor, port=8080)
    await health_server.start()
    ...
    await health_server.stop()
"""

import logging
from datetime import UTC, datetime

from aiohttp import web

from collector.fleet import FleetSupervisor

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """
    HTTP server for health probes and the stats surface.

    Liveness always returns 200 while the server runs. Readiness returns 200
    once the supervisor has converged on its first endpoint set, 503 before.
    """

    def __init__(
        self,
        supervisor: FleetSupervisor,
        port: int | None = 8080,
        name: str = "collector",
        host: str = "0.0.0.0",
    ):
        """
        Args:
            supervisor: Fleet whose state is reported
            port: HTTP port. 0 for dynamic assignment, None to disable.
            name: Process name reported in responses
            host: Bind address
        """
        self.supervisor = supervisor
        self.port = port
        self.name = name
        self.host = host
        self._enabled = port is not None
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None
        self._runner: web.AppRunner | None = None

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "name": self.name,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=200,
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        """200 once the fleet has converged, 503 otherwise."""
        summary = self.supervisor.summary()
        body = {
            "name": self.name,
            "fleet": self.supervisor.state.value,
            "checks": {
                "active_pods": summary["active"],
                "disabled_pods": summary["disabled"],
                "sink_connected": summary["sink_connected"],
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if self.supervisor.converged:
            return web.json_response({"status": "ready", **body}, status=200)
        return web.json_response(
            {"status": "not_ready", "reasons": ["fleet_not_converged"], **body},
            status=503,
        )

    async def handle_stats(self, request: web.Request) -> web.Response:
        return web.json_response(self.supervisor.stats())

    def create_app(self) -> web.Application:
        """Create aiohttp application with health and stats endpoints."""
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        app.router.add_get("/stats", self.handle_stats)
        return app

    async def start(self) -> None:
        """
        Start listening. Falls back to a dynamic port if the configured one
        is in use; logs a warning and continues without the server if that
        fails too.
        """
        if not self._enabled:
            logger.debug("Health check server is disabled, skipping start")
            return
        if self._runner is not None:
            return

        if await self._try_start_on_port(self.port):
            pass
        elif self.port != 0 and await self._try_start_on_port(0):
            logger.warning(
                f"Port {self.port} in use, falling back to dynamic port assignment",
                extra={"error": "address in use"},
            )
        else:
            logger.warning("Could not start health check server")
            return

        logger.info(
            "Health check server started",
            extra={"http_url": f"http://localhost:{self._actual_port}/health/ready"},
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.debug("Health check server stopped")

    async def _try_start_on_port(self, port: int) -> bool:
        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, port, reuse_address=True)
        try:
            await site.start()
        except OSError as e:
            # Port in use: errno 98 (Linux) or 10048 (Windows)
            await runner.cleanup()
            if e.errno in (98, 10048):
                return False
            raise

        self._runner = runner
        if site._server and site._server.sockets:
            self._actual_port = site._server.sockets[0].getsockname()[1]
        else:
            self._actual_port = port
        return True


__all__ = ["HealthCheckServer"]
