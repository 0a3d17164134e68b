"""
Logging configuration.

One stderr handler on the root logger. JSON lines by default so log
shippers can parse them; plain text for local runs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from .request_context import client_ip_ctx, request_id_ctx
from .safe_json import sanitize_for_json

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_HANDLER_NAME = "memory-stderr"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = request_id_ctx.get()
        if request_id:
            payload["request_id"] = request_id
        client_ip = client_ip_ctx.get()
        if client_ip:
            payload["client_ip"] = client_ip
        meta = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if meta:
            payload["meta"] = sanitize_for_json(meta)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "info", json_output: bool = True) -> logging.Handler:
    """Install (or replace) the service's stderr handler on the root logger."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root.addHandler(handler)
    root.setLevel(level.upper())

    # uvicorn installs its own handlers; route them through ours.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lib = logging.getLogger(name)
        lib.handlers = []
        lib.propagate = True
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    return handler
