"""
Rate limiting for billing endpoints.

One SlowAPI limiter is shared by the app and all routers. Requests are keyed
by the first X-Forwarded-For hop when the API sits behind a proxy, falling
back to the socket address.
"""
from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# Per-route limits
BILLING_READ_LIMIT = "60/minute"
BILLING_WRITE_LIMIT = "10/minute"
CONFLICT_RESOLVE_LIMIT = "5/minute"
WEBHOOK_LIMIT = "200/minute"
CRON_LIMIT = "10/minute"


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=client_address, default_limits=["1000/hour"])

rate_limit_handler = _rate_limit_exceeded_handler
rate_limit_exception = RateLimitExceeded
