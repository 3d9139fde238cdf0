"""
Prometheus metrics endpoint.

Exposes pipeline metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'docai_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'docai_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Business Metrics - Jobs
# ============================================

jobs_queued = Counter(
    'docai_jobs_queued_total',
    'Total jobs queued',
    ['source']
)

jobs_completed = Counter(
    'docai_jobs_completed_total',
    'Total jobs completed',
    ['provider']
)

jobs_failed = Counter(
    'docai_jobs_failed_total',
    'Total jobs failed',
    ['stage']
)

fallback_results = Counter(
    'docai_fallback_results_total',
    'Jobs completed with the deterministic fallback analysis'
)

# ============================================
# Dispatch and Admission Metrics
# ============================================

dispatch_failures = Counter(
    'docai_dispatch_failures_total',
    'Dispatch triggers that were never delivered',
    ['reason']
)

rate_limit_exceeded = Counter(
    'docai_rate_limit_exceeded_total',
    'Total requests blocked by rate limiting',
    ['route']
)

quota_rejections = Counter(
    'docai_quota_rejections_total',
    'Uploads rejected because free credits were exhausted'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Called by the logging middleware after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_job_queued(source: str):
    """Record a job entering the queue ("upload" or "retry")."""
    jobs_queued.labels(source=source).inc()


def track_job_completed(provider: str | None):
    """Record a job completing; provider is None for fallback or placeholder results."""
    jobs_completed.labels(provider=provider or "none").inc()


def track_job_failed(stage: str):
    jobs_failed.labels(stage=stage).inc()


def track_fallback_result():
    fallback_results.inc()


def track_dispatch_failure(reason: str):
    dispatch_failures.labels(reason=reason).inc()


def track_rate_limit_exceeded(route: str):
    """Record a rate limit block."""
    rate_limit_exceeded.labels(route=route).inc()


def track_quota_rejection():
    quota_rejections.inc()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
