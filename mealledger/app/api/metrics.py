"""Metrics and monitoring endpoints for the ledger service.

Prometheus-compatible request and redemption metrics, collected in
process.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from mealledger.app.core.logging import get_logger
from mealledger.app.middleware.auth import GOVERNMENT, CallerIdentity, require_role

logger = get_logger(__name__)
router = APIRouter()

# Outcome label for a successful claim
CLAIMED = "claimed"


@dataclass
class RequestMetrics:
    """Metrics for a single endpoint."""

    count: int = 0
    total_duration: float = 0.0
    errors: int = 0


@dataclass
class MetricsCollector:
    """Collects and stores service metrics.

    This class is safe to share between concurrent requests and collects:
    - Request counts and latencies per endpoint
    - Redemption outcomes (claimed or the rejection error code)
    - Error counts by type
    """

    # Request metrics by endpoint
    _requests: Dict[str, RequestMetrics] = field(
        default_factory=lambda: defaultdict(lambda: RequestMetrics())
    )

    # Redemption outcomes by label
    _redemptions: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Error counts by type
    _errors: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Async safety
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    # Start time for uptime calculation
    _start_time: float = field(default_factory=time.time)

    async def record_request(
        self, endpoint: str, duration: float, status_code: int
    ) -> None:
        """Record a request metric.

        Args:
            endpoint: The route template (or raw path when unrouted)
            duration: Request duration in seconds
            status_code: HTTP status code
        """
        async with self._lock:
            metrics = self._requests[endpoint]
            metrics.count += 1
            metrics.total_duration += duration
            if status_code >= 400:
                metrics.errors += 1

    async def record_redemption(self, outcome: str) -> None:
        """Record a redemption outcome: ``claimed`` or an error code."""
        async with self._lock:
            self._redemptions[outcome] += 1

    async def record_error(self, error_type: str) -> None:
        async with self._lock:
            self._errors[error_type] += 1

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics.

        Returns:
            Dictionary with metrics summary
        """
        async with self._lock:
            total_requests = sum(m.count for m in self._requests.values())
            total_errors = sum(m.errors for m in self._requests.values())
            total_duration = sum(m.total_duration for m in self._requests.values())

            avg_latency = total_duration / total_requests if total_requests > 0 else 0
            error_rate = total_errors / total_requests if total_requests > 0 else 0

            endpoint_latencies = {}
            for endpoint, metrics in self._requests.items():
                if metrics.count > 0:
                    endpoint_latencies[endpoint] = {
                        "count": metrics.count,
                        "avg_duration_ms": round(
                            (metrics.total_duration / metrics.count) * 1000, 2
                        ),
                        "error_count": metrics.errors,
                    }

            attempts = sum(self._redemptions.values())
            claimed = self._redemptions.get(CLAIMED, 0)

            return {
                "uptime_seconds": round(time.time() - self._start_time, 2),
                "total_requests": total_requests,
                "total_errors": total_errors,
                "error_rate": round(error_rate, 4),
                "average_latency_ms": round(avg_latency * 1000, 2),
                "endpoints": endpoint_latencies,
                "redemptions": {
                    "attempts": attempts,
                    "claimed": claimed,
                    "rejected": attempts - claimed,
                    "by_outcome": dict(self._redemptions),
                },
                "errors_by_type": dict(self._errors),
            }

    async def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        async with self._lock:
            lines = []

            lines.append("# HELP mealledger_requests_total Total number of requests")
            lines.append("# TYPE mealledger_requests_total counter")
            for endpoint, metrics in self._requests.items():
                lines.append(
                    f'mealledger_requests_total{{endpoint="{endpoint}"}} {metrics.count}'
                )

            lines.append(
                "\n# HELP mealledger_request_duration_seconds Total request duration"
            )
            lines.append("# TYPE mealledger_request_duration_seconds counter")
            for endpoint, metrics in self._requests.items():
                lines.append(
                    f'mealledger_request_duration_seconds{{endpoint="{endpoint}"}} {metrics.total_duration}'
                )

            lines.append("\n# HELP mealledger_errors_total Total number of error responses")
            lines.append("# TYPE mealledger_errors_total counter")
            total_errors = sum(m.errors for m in self._requests.values())
            lines.append(f"mealledger_errors_total{{}} {total_errors}")

            lines.append(
                "\n# HELP mealledger_redemptions_total Redemption attempts by outcome"
            )
            lines.append("# TYPE mealledger_redemptions_total counter")
            for outcome, count in self._redemptions.items():
                lines.append(
                    f'mealledger_redemptions_total{{outcome="{outcome}"}} {count}'
                )

            lines.append("\n# HELP mealledger_uptime_seconds Service uptime in seconds")
            lines.append("# TYPE mealledger_uptime_seconds gauge")
            lines.append(
                f"mealledger_uptime_seconds{{}} {round(time.time() - self._start_time, 2)}"
            )

            return "\n".join(lines) + "\n"


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance.

    Returns:
        MetricsCollector singleton instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics_collector() -> None:
    """Reset the global metrics collector (useful for testing)."""
    global _metrics_collector
    _metrics_collector = None


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> PlainTextResponse:
    """Prometheus-compatible metrics endpoint (government callers only)."""
    collector = get_metrics_collector()
    content = await collector.get_prometheus_metrics()
    return PlainTextResponse(
        content=content, media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/stats")
async def service_stats(
    caller: CallerIdentity = Depends(require_role(GOVERNMENT)),
) -> dict[str, Any]:
    """Detailed service statistics (government callers only)."""
    collector = get_metrics_collector()
    return await collector.get_summary()


class MetricsMiddleware:
    """Middleware to collect request metrics.

    Example:
        app.add_middleware(MetricsMiddleware)
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        status_code = 500

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            duration = time.time() - start_time
            # Route template keeps ids out of the endpoint label
            route = scope.get("route")
            endpoint = getattr(route, "path", None) or scope.get("path", "unknown")
            await get_metrics_collector().record_request(endpoint, duration, status_code)


async def record_redemption(outcome: str) -> None:
    """Record a redemption outcome.

    Args:
        outcome: ``claimed`` or the error code of the rejection
    """
    await get_metrics_collector().record_redemption(outcome)
