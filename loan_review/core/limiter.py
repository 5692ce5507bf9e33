from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from loan_review.core.settings import settings


def caller_or_remote_address(request: Request) -> str:
    """Rate-limit key: the bearer token tail when present, else the client address."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return f"token:{token[-32:]}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=caller_or_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
    key_prefix=settings.redis_key_prefix,
)

__all__ = ["limiter", "caller_or_remote_address"]
