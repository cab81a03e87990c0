"""Rate limiting for credential-accepting endpoints"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from peoplefinder.config import settings


def get_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting

    Break-glass and sign-in endpoints are unauthenticated by nature, so the
    key is the first hop of X-Forwarded-For (App Service sits behind a proxy)
    falling back to the peer address.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


# Create limiter instance
limiter = Limiter(
    key_func=get_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


# Rate limit configurations for different endpoints
RATE_LIMITS = {
    "emergency_login": settings.RATE_LIMIT_LOGIN,
    "emergency_verify": settings.RATE_LIMIT_LOGIN,
    "office_exchange": "60/minute",
    "oauth": "30/minute",
}


def get_rate_limit(endpoint: str) -> str:
    """Get rate limit for specific endpoint"""
    return RATE_LIMITS.get(endpoint, settings.RATE_LIMIT_LOGIN)
