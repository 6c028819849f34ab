"""Prometheus metrics for monitoring TrackDrop"""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server


logger = logging.getLogger(__name__)


# Metrics instances (initialized once)
_metrics_initialized = False
_metrics_server_started = False

# Counters
api_calls_total = None
api_retries_total = None
token_refreshes_total = None
tracks_appended_total = None
discovery_runs_total = None

# Histograms
api_latency_seconds = None

# Gauges
last_discovery_timestamp = None
last_discovery_track_count = None


def init_metrics() -> None:
    """Initialize Prometheus metrics.

    This should be called once at application startup.
    """
    global _metrics_initialized
    global api_calls_total, api_retries_total, token_refreshes_total
    global tracks_appended_total, discovery_runs_total
    global api_latency_seconds, last_discovery_timestamp, last_discovery_track_count

    if _metrics_initialized:
        return

    logger.info("Initializing Prometheus metrics")

    api_calls_total = Counter(
        'trackdrop_api_calls_total',
        'Total number of Spotify API calls',
        ['method', 'status']
    )

    api_retries_total = Counter(
        'trackdrop_api_retries_total',
        'Total number of retried Spotify API calls',
        ['reason']
    )

    token_refreshes_total = Counter(
        'trackdrop_token_refreshes_total',
        'Total number of access token refreshes',
        ['result']
    )

    tracks_appended_total = Counter(
        'trackdrop_tracks_appended_total',
        'Tracks submitted to the collaborative playlist',
        ['outcome']
    )

    discovery_runs_total = Counter(
        'trackdrop_discovery_runs_total',
        'Discovery playlist generation runs',
        ['result']
    )

    api_latency_seconds = Histogram(
        'trackdrop_api_latency_seconds',
        'Spotify API call latency in seconds',
        ['method'],
        buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
    )

    last_discovery_timestamp = Gauge(
        'trackdrop_last_discovery_timestamp',
        'Timestamp of last successful discovery run'
    )

    last_discovery_track_count = Gauge(
        'trackdrop_last_discovery_track_count',
        'Number of tracks in the last generated discovery playlist'
    )

    _metrics_initialized = True
    logger.info("Prometheus metrics initialized")


def start_metrics_server(port: int = 9090) -> bool:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)

    Returns:
        True if server started successfully
    """
    global _metrics_server_started

    if _metrics_server_started:
        logger.warning("Metrics server already started")
        return True

    try:
        start_http_server(port)
        _metrics_server_started = True
        logger.info("Prometheus metrics server started on port %d", port)
        return True
    except OSError as e:
        logger.error("Failed to start metrics server: %s", e)
        return False


def setup_metrics(enabled: bool = True, port: int = 9090) -> bool:
    """Setup and optionally start metrics server.

    Args:
        enabled: Whether to start the metrics server
        port: Port for metrics server

    Returns:
        True if setup succeeded
    """
    if not enabled:
        logger.info("Metrics collection disabled")
        return False

    init_metrics()
    return start_metrics_server(port)


# Convenience functions for recording metrics
def record_api_call(method: str, status: str, duration: Optional[float] = None) -> None:
    """Record API call.

    Args:
        method: HTTP method
        status: HTTP status code or error kind
        duration: Optional duration in seconds
    """
    if api_calls_total:
        api_calls_total.labels(method=method, status=status).inc()

    if duration is not None and api_latency_seconds:
        api_latency_seconds.labels(method=method).observe(duration)


def record_retry(reason: str) -> None:
    """Record a retried API call"""
    if api_retries_total:
        api_retries_total.labels(reason=reason).inc()


def record_token_refresh(success: bool) -> None:
    """Record token refresh"""
    if token_refreshes_total:
        token_refreshes_total.labels(result="success" if success else "failure").inc()


def record_track_appended(outcome: str) -> None:
    """Record append outcome (added, already_exists, error)"""
    if tracks_appended_total:
        tracks_appended_total.labels(outcome=outcome).inc()


def record_discovery_run(success: bool, track_count: int = 0) -> None:
    """Record discovery run completion.

    Args:
        success: Whether the run published a playlist
        track_count: Number of tracks published
    """
    if discovery_runs_total:
        discovery_runs_total.labels(result="success" if success else "failure").inc()
    if success:
        if last_discovery_timestamp:
            last_discovery_timestamp.set(time.time())
        if last_discovery_track_count:
            last_discovery_track_count.set(track_count)
