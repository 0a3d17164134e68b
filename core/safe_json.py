from __future__ import annotations

import json
import math
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from starlette.responses import JSONResponse


def sanitize_for_json(obj: Any) -> Any:
    """Recursively convert store records into strict-JSON values.

    asyncpg hands back UUIDs, datetimes and bytes; JSON has none of those.
    Non-finite floats become None, timestamps become ISO-8601 strings.
    """

    # Fast-path common primitives
    if obj is None or isinstance(obj, (str, int, bool)):
        return obj

    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, uuid.UUID):
        return str(obj)

    if isinstance(obj, Decimal):
        return sanitize_for_json(float(obj))

    if isinstance(obj, (bytes, bytearray, memoryview)):
        return None

    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [sanitize_for_json(v) for v in obj]

    # Dataclasses and other simple objects
    try:
        d = vars(obj)
    except TypeError:
        return str(obj)
    return sanitize_for_json(d)


def dumps_pretty(obj: Any) -> str:
    """Indented JSON for tool result text payloads."""
    return json.dumps(sanitize_for_json(obj), ensure_ascii=False, allow_nan=False, indent=2)


class SafeJSONResponse(JSONResponse):
    """JSONResponse that guarantees strict JSON (no NaN/Infinity).

    We sanitize the content first, then serialize with allow_nan=False.
    """

    def render(self, content: Any) -> bytes:
        content = sanitize_for_json(content)
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        ).encode("utf-8")
