from __future__ import annotations

import contextvars

# Set by the HTTP layer for each request; read by the log formatter.
request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)
client_ip_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "client_ip",
    default=None,
)
