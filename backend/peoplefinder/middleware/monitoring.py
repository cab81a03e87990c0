"""Monitoring and observability middleware"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

from peoplefinder.utils.logger import logger


# ===== Prometheus Metrics =====

# Request metrics
http_requests_total = Counter(
    "peoplefinder_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "peoplefinder_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

http_errors_total = Counter(
    "peoplefinder_http_errors_total",
    "Total HTTP errors",
    ["method", "endpoint", "status"]
)

# Auth metrics
login_total = Counter(
    "peoplefinder_logins_total",
    "Successful sign-ins",
    ["method"]  # oauth, office_sso, break_glass
)

authentication_failures_total = Counter(
    "peoplefinder_authentication_failures_total",
    "Total authentication failures",
    ["type"]  # session, admin, break_glass, oauth, office_sso, refresh
)

directory_lookups_total = Counter(
    "peoplefinder_directory_lookups_total",
    "Okta membership lookups",
    ["outcome"]  # found, not_found, error
)

audit_write_failures_total = Counter(
    "peoplefinder_audit_write_failures_total",
    "Audit rows that could not be persisted"
)


# Requests slower than this are logged; most time goes to Microsoft and Okta calls
SLOW_REQUEST_SECONDS = 2.0


def _route_label(request: Request) -> str:
    # Template path keeps /api/admin/users/{admin_id} to one series
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MonitoringMiddleware(BaseHTTPMiddleware):
    """Counts and times every request, tags responses with X-Request-ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            endpoint = _route_label(request)
            http_errors_total.labels(method=request.method, endpoint=endpoint, status=500).inc()
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={"request_id": request_id, "method": request.method, "path": request.url.path},
                exc_info=True,
            )
            raise

        elapsed = time.perf_counter() - started
        endpoint = _route_label(request)
        labels = {"method": request.method, "endpoint": endpoint}
        http_requests_total.labels(status=response.status_code, **labels).inc()
        http_request_duration_seconds.labels(**labels).observe(elapsed)
        if response.status_code >= 400:
            http_errors_total.labels(status=response.status_code, **labels).inc()

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {elapsed:.2f}s",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                },
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response


def record_login(method: str):
    """Record a successful sign-in"""
    login_total.labels(method=method).inc()


def record_auth_failure(auth_type: str):
    """Record authentication failure"""
    authentication_failures_total.labels(type=auth_type).inc()


def record_directory_lookup(outcome: str):
    """Record an Okta lookup outcome"""
    directory_lookups_total.labels(outcome=outcome).inc()


def record_audit_failure():
    audit_write_failures_total.inc()
