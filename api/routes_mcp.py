from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response
from mcp.types import PARSE_ERROR

from api.deps import ApiKeyDep, RateLimitDep
from core.metrics import metrics
from core.safe_json import SafeJSONResponse
from mcp_server.dispatcher import error_response

router = APIRouter(tags=["mcp"])


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing anything larger than ``limit`` bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="payload_too_large")
    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise HTTPException(status_code=413, detail="payload_too_large")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/mcp", dependencies=[ApiKeyDep, RateLimitDep])
@router.post("/", dependencies=[ApiKeyDep, RateLimitDep])
async def mcp_endpoint(request: Request) -> Response:
    """JSON-RPC entry point. Single request or batch."""
    body = await _read_body(request, request.app.state.settings.max_body_bytes)
    try:
        payload: Any = json.loads(body)
    except ValueError:
        metrics.increment(f"rpc.error_code.{PARSE_ERROR}")
        return SafeJSONResponse(error_response(None, PARSE_ERROR, "Parse error"))

    result = await request.app.state.dispatcher.handle_payload(payload)
    if result is None:
        return Response(status_code=204)
    return SafeJSONResponse(result)


@router.get("/health", response_model=dict)
async def health(request: Request) -> dict:
    db = request.app.state.db
    return {
        "status": "ok",
        "vector_enabled": bool(request.app.state.vector_enabled),
        "database": await db.ping() if db is not None else False,
    }


@router.get("/", response_model=dict)
async def service_info(request: Request) -> dict:
    mcp_settings = request.app.state.dispatcher.settings
    return {
        "name": mcp_settings.server_name,
        "version": mcp_settings.server_version,
        "endpoints": ["/mcp", "/health", "/metrics"],
    }


@router.get("/metrics", response_model=dict, dependencies=[ApiKeyDep])
async def metrics_snapshot(request: Request) -> dict:
    stats = metrics.get_stats()
    stats["rate_limiter"] = request.app.state.rate_limiter.stats()
    return stats
