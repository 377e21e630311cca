"""
Admin API key check for the management endpoints.

Usage:
    @router.get("/queue/stats")
    async def queue_stats(
        _: None = Depends(require_admin_api_key),
    ):
        ...

Repeated wrong keys from one client address lock that address out for
ADMIN_AUTH_LOCKOUT_SECONDS.
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.counters import KeyedCounter, get_keyed_counter
from app.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


def _failure_key(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"admin_auth_failures:{client_ip}"


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Depends(_api_key_header),
    counter: KeyedCounter = Depends(get_keyed_counter),
) -> None:
    """
    Validate the admin API key.

    401 if the key is missing, 403 if it does not match or ADMIN_API_KEY is
    unset, 429 while the caller is locked out.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint access denied, ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY is not configured",
        )

    key = _failure_key(request)
    failures = await counter.get(key)
    if failures >= settings.ADMIN_AUTH_MAX_FAILURES:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts, try again later",
            headers={"Retry-After": str(settings.ADMIN_AUTH_LOCKOUT_SECONDS)},
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key, X-Admin-API-Key header is required",
        )

    if not hmac.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        failures = await counter.increment(key, settings.ADMIN_AUTH_LOCKOUT_SECONDS)
        logger.warning(
            "Admin endpoint access denied, wrong API key",
            extra_data={"failures": failures, "client": key.split(":", 1)[1]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    if failures:
        await counter.reset(key)
