"""Middleware modules for metrics and rate limiting"""
from peoplefinder.middleware.monitoring import (
    MonitoringMiddleware,
    record_audit_failure,
    record_auth_failure,
    record_directory_lookup,
    record_login,
)
from peoplefinder.middleware.rate_limit import limiter, get_rate_limit

__all__ = [
    "MonitoringMiddleware",
    "record_audit_failure",
    "record_auth_failure",
    "record_directory_lookup",
    "record_login",
    "limiter",
    "get_rate_limit",
]
