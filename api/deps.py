from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _api_key_dep(
    request: Request,
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    expected = (request.app.state.settings.api_key or "").strip()
    if not expected:
        return
    auth = (authorization or "").strip()
    if auth.startswith("Bearer "):
        provided = auth[len("Bearer "):].strip()
    else:
        provided = (x_api_key or "").strip()
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="invalid_api_key")


async def _rate_limit_dep(request: Request) -> None:
    key = client_ip(request)
    if not await request.app.state.rate_limiter.is_allowed(key):
        logger.debug("rate limit exceeded for %s", key)
        raise HTTPException(status_code=429, detail="rate_limit_exceeded")


ApiKeyDep = Depends(_api_key_dep)
RateLimitDep = Depends(_rate_limit_dep)
