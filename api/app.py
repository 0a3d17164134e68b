"""HTTP application: wiring, lifespan and request middleware."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response

from api.deps import client_ip
from api.routes_mcp import router as mcp_router
from core.async_scheduler import PeriodicTask
from core.config import Settings, settings as default_settings
from core.db_postgres import PostgresDB
from core.request_context import client_ip_ctx, request_id_ctx
from core.security.rate_limit import DistributedRateLimiter
from core.store import MemoryStore, StoreOptions
from mcp_server.config import MCPSettings, mcp_settings as default_mcp_settings
from mcp_server.dispatcher import McpDispatcher
from mcp_server.memory_tools import MemoryTools

logger = logging.getLogger(__name__)


async def _start_services(app: FastAPI) -> None:
    cfg: Settings = app.state.settings
    db = PostgresDB(cfg.dsn, min_size=cfg.pool_min_size, max_size=cfg.pool_max_size)
    await db.init()

    info = await db.detect_info()
    vector_enabled = cfg.enable_pgvector and info.vector_extension and info.embedding_column
    if cfg.enable_pgvector and not vector_enabled:
        logger.warning(
            "pgvector requested but unavailable; vector search disabled",
            extra={
                "vector_extension": info.vector_extension,
                "embedding_column": info.embedding_column,
            },
        )

    store = MemoryStore(
        db,
        StoreOptions(
            max_content_chars=cfg.max_content_chars,
            max_title_chars=cfg.max_title_chars,
            max_raw_chars=cfg.max_raw_chars,
            store_raw_plaintext=cfg.store_raw_plaintext,
            vector_enabled=vector_enabled,
        ),
    )
    policy = app.state.mcp_settings.write_policy(
        max_content_chars=cfg.max_content_chars,
        vector_enabled=vector_enabled,
    )

    app.state.db = db
    app.state.vector_enabled = vector_enabled
    app.state.dispatcher = McpDispatcher(MemoryTools(store, policy), app.state.mcp_settings)
    app.state.sweeper = PeriodicTask("ttl-sweep", store.cleanup_expired_entries, cfg.cleanup_interval_s)
    app.state.sweeper.start()

    logger.info(
        "memory service ready",
        extra={"vector_enabled": vector_enabled, "raw_plaintext": cfg.store_raw_plaintext},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A pre-built dispatcher means the caller owns storage.
    if app.state.dispatcher is None:
        await _start_services(app)
    try:
        yield
    finally:
        if app.state.sweeper is not None:
            await app.state.sweeper.stop()
        await app.state.rate_limiter.close()
        if app.state.db is not None and app.state.owns_db:
            await app.state.db.close()


def create_app(
    settings: Optional[Settings] = None,
    *,
    mcp_settings: Optional[MCPSettings] = None,
    dispatcher: Optional[McpDispatcher] = None,
    db: Optional[PostgresDB] = None,
) -> FastAPI:
    cfg = settings or default_settings

    app = FastAPI(
        title="Context Memory",
        version=(mcp_settings or default_mcp_settings).server_version,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.mcp_settings = mcp_settings or default_mcp_settings
    app.state.dispatcher = dispatcher
    app.state.db = db
    app.state.owns_db = dispatcher is None
    app.state.sweeper = None
    app.state.vector_enabled = bool(dispatcher and dispatcher.tools.policy.vector_enabled)
    app.state.rate_limiter = DistributedRateLimiter(
        max_requests=cfg.rate_limit_max,
        window_s=cfg.rate_limit_window_s,
        max_keys=cfg.rate_limit_max_keys,
        redis_url=cfg.redis_url if cfg.redis_enabled else None,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        rid_token = request_id_ctx.set(request_id)
        ip_token = client_ip_ctx.set(client_ip(request))
        try:
            if request.method == "OPTIONS":
                response = Response(status_code=204)
            else:
                response = await call_next(request)
        finally:
            request_id_ctx.reset(rid_token)
            client_ip_ctx.reset(ip_token)

        response.headers["X-Request-ID"] = request_id
        response.headers["Access-Control-Allow-Origin"] = cfg.allow_origin
        response.headers["Access-Control-Allow-Methods"] = "POST, GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = (
            "Authorization, Content-Type, X-API-Key, X-Request-ID"
        )
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    app.include_router(mcp_router)
    return app
