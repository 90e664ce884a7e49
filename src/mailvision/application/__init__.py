"""Application layer - watcher lifecycle, harvesting and fan-out."""

from mailvision.application.cancellation import CancellationToken
from mailvision.application.hub import PublishHub, Subscription
from mailvision.application.rate_limiter import RateLimiter
from mailvision.application.session_manager import Backoff, SessionManager
from mailvision.application.telemetry import LoggingTelemetry, Telemetry, WatcherStats

__all__ = [
    "Backoff",
    "CancellationToken",
    "LoggingTelemetry",
    "PublishHub",
    "RateLimiter",
    "SessionManager",
    "Subscription",
    "Telemetry",
    "WatcherStats",
]
