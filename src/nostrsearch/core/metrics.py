"""
Prometheus metrics collection and HTTP exposition.

Module-level metric objects are process-wide singletons. Services record
through a [SearchMetrics][nostrsearch.core.metrics.SearchMetrics] recorder,
which turns every call into a no-op when metrics are disabled, so unit tests
and one-shot CLI runs never touch the registry.

Architecture:
    SEARCH_SESSIONS_TOTAL:      Settled searches by outcome.
    SEARCH_DURATION_SECONDS:    Histogram of start-to-settle latency.
    RELAY_SUBSCRIPTIONS_TOTAL:  Per-relay subscription results (eose, error).
    PROFILE_FETCHES_TOTAL:      Profile lookups by result (found, missing, error).
    PROFILE_CACHE_SIZE:         Current number of cached profile entries.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for metrics recording and the ``/metrics`` endpoint.

    The HTTP endpoint is only started by the CLI shell, and only when
    ``enabled`` is True.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Metric objects
# ---------------------------------------------------------------------------

SEARCH_SESSIONS_TOTAL = Counter(
    "nostrsearch_search_sessions_total",
    "Settled search sessions by outcome",
    ["outcome"],
)

SEARCH_DURATION_SECONDS = Histogram(
    "nostrsearch_search_duration_seconds",
    "Duration from search start to settle in seconds",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 30, 60),
)

RELAY_SUBSCRIPTIONS_TOTAL = Counter(
    "nostrsearch_relay_subscriptions_total",
    "Relay subscription results",
    ["result"],
)

PROFILE_FETCHES_TOTAL = Counter(
    "nostrsearch_profile_fetches_total",
    "Profile lookups by result",
    ["result"],
)

PROFILE_CACHE_SIZE = Gauge(
    "nostrsearch_profile_cache_size",
    "Number of cached profile entries (including negative markers)",
)


class SearchMetrics:
    """Thin recorder over the module-level metrics, gated by ``enabled``."""

    __slots__ = ("_enabled",)

    def __init__(self, enabled: bool = False) -> None:
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def search_settled(self, outcome: str, duration: float) -> None:
        if not self._enabled:
            return
        SEARCH_SESSIONS_TOTAL.labels(outcome=outcome).inc()
        SEARCH_DURATION_SECONDS.observe(duration)

    def subscription_finished(self, result: str) -> None:
        if not self._enabled:
            return
        RELAY_SUBSCRIPTIONS_TOTAL.labels(result=result).inc()

    def profile_fetched(self, result: str) -> None:
        if not self._enabled:
            return
        PROFILE_FETCHES_TOTAL.labels(result=result).inc()

    def profile_cache_size(self, size: int) -> None:
        if not self._enabled:
            return
        PROFILE_CACHE_SIZE.set(size)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... shell runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind the endpoint; no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Release the bound port. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})
