"""Prometheus metrics for the transcoding worker.

Tracks job outcomes, stage timings and the number of encodes in flight.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., celery prefork pool)
if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "vidpress_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Job Metrics
# ============================================
JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Total number of transcoding requests by outcome",
    ["status"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "End-to-end job duration in seconds",
    ["status"],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1200.0, 3600.0],
    registry=REGISTRY,
)

STAGE_DURATION_SECONDS = Histogram(
    "transcode_stage_duration_seconds",
    "Duration of a single pipeline stage in seconds",
    ["stage"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 1800.0],
    registry=REGISTRY,
)

ENCODES_IN_PROGRESS = Gauge(
    "transcode_encodes_in_progress",
    "Number of jobs currently holding a media processing slot",
    registry=REGISTRY,
)

LOG_PERSIST_FAILURES_TOTAL = Counter(
    "transcode_log_persist_failures_total",
    "Job log entries or status updates that could not be persisted",
    ["operation"],
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
