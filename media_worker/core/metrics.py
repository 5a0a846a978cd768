"""Prometheus metrics for the media worker.

Exposes HTTP request metrics, dispatcher occupancy and per-artifact
outcomes so partial results (dropped tracks/variants) are visible.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Private registry so tests can import this module repeatedly
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "media_worker_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "media_worker_http_requests_total",
    "Worker API requests by route template",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "media_worker_http_request_duration_seconds",
    "Worker API latency by route template",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "media_worker_http_requests_in_progress",
    "Worker API requests currently being served",
    ["method"],
    registry=REGISTRY,
)


# ============================================
# Dispatcher Metrics
# ============================================
JOBS_RUNNING = Gauge(
    "media_jobs_running",
    "Number of jobs currently running (all kinds)",
    registry=REGISTRY,
)

JOBS_QUEUED = Gauge(
    "media_jobs_queued",
    "Number of jobs waiting in a queue",
    ["kind"],
    registry=REGISTRY,
)

JOBS_FINISHED_TOTAL = Counter(
    "media_jobs_finished_total",
    "Jobs that reached a terminal state",
    ["kind", "outcome"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "media_job_duration_seconds",
    "Job processing duration in seconds",
    ["kind"],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
    registry=REGISTRY,
)


# ============================================
# Artifact Metrics
# ============================================
ARTIFACTS_TOTAL = Counter(
    "media_artifacts_total",
    "Artifacts produced or dropped by type and outcome",
    ["artifact", "outcome"],
    registry=REGISTRY,
)

ENCODE_DURATION_SECONDS = Histogram(
    "media_encode_duration_seconds",
    "External encoder run time per artifact",
    ["artifact"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
