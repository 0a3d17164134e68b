"""Normalisation of untrusted tool arguments.

Every value that arrives from a caller goes through one of these functions
before it reaches the policy layer or the store. Each function either returns
a canonical, bounded value or raises ``ValidationError`` naming the field.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ValidationError
from .models import EntryInput

ENTRY_TYPES: tuple[str, ...] = (
    "summary",
    "fact",
    "decision",
    "question",
    "note",
    "snippet",
    "todo",
)
SCOPES: tuple[str, ...] = ("local", "shared")
SEARCH_MODES: tuple[str, ...] = ("fts", "vector", "hybrid")

NAMESPACE_MAX = 64
CONTEXT_ID_MAX = 128
ALIAS_MAX = 128
ENTRY_ID_MAX = 64
ENTRY_TYPE_MAX = 20
DESCRIPTION_MAX = 500
OWNER_MAX = 120
QUERY_MAX = 400
EXPIRES_AT_MAX = 64

DEFAULT_MAX_TAGS = 32
DEFAULT_MAX_TAG_LENGTH = 32
ENTRY_MAX_TAGS = 64
ENTRY_MAX_TAG_LENGTH = 160
EMBEDDING_MAX_DIMENSIONS = 4096

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_TEXT_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_WHITESPACE = re.compile(r"\s")


def optional_string(value: Any, field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    trimmed = value.strip()
    if not trimmed:
        return None
    if len(trimmed) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters", field=field)
    if _CONTROL_CHARS.search(trimmed):
        raise ValidationError(f"{field} contains control characters", field=field)
    return trimmed


def required_string(value: Any, field: str, max_length: int) -> str:
    normalized = optional_string(value, field, max_length)
    if not normalized:
        raise ValidationError(f"{field} is required", field=field)
    return normalized


def optional_text(
    value: Any, field: str, max_length: int, *, preserve: bool = False
) -> Optional[str]:
    """Like ``optional_string`` but for multi-line bodies.

    Tab, newline and carriage return are allowed. With ``preserve`` the value
    is returned untrimmed so it round-trips exactly.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    trimmed = value.strip()
    if not trimmed:
        return None
    out = value if preserve else trimmed
    if len(out) > max_length:
        raise ValidationError(f"{field} exceeds {max_length} characters", field=field)
    if _TEXT_CONTROL_CHARS.search(out):
        raise ValidationError(f"{field} contains control characters", field=field)
    return out


def required_text(value: Any, field: str, max_length: int) -> str:
    normalized = optional_text(value, field, max_length)
    if not normalized:
        raise ValidationError(f"{field} is required", field=field)
    return normalized


def identifier(value: Any, field: str, max_length: int) -> str:
    normalized = required_string(value, field, max_length)
    if _WHITESPACE.search(normalized):
        raise ValidationError(f"{field} must not contain spaces", field=field)
    return normalized


def namespace(value: Any) -> str:
    return identifier(value, "namespace", NAMESPACE_MAX)


def context_id(value: Any) -> str:
    return identifier(value, "context_id", CONTEXT_ID_MAX)


def alias(value: Any) -> str:
    return identifier(value, "alias", ALIAS_MAX)


def scope(value: Any) -> str:
    raw = optional_string(value, "scope", 16) or "shared"
    if raw not in SCOPES:
        raise ValidationError(f"scope must be one of: {', '.join(SCOPES)}", field="scope")
    return raw


def entry_type(value: Any, field: str = "entry_type") -> str:
    raw = optional_string(value, field, ENTRY_TYPE_MAX) or "note"
    if raw not in ENTRY_TYPES:
        raise ValidationError(
            f"{field} must be one of: {', '.join(ENTRY_TYPES)}", field=field
        )
    return raw


def required_entry_type(value: Any, field: str = "entry_type") -> str:
    return entry_type(required_string(value, field, ENTRY_TYPE_MAX), field)


def entry_types(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("types must be an array of strings", field="types")
    out: list[str] = []
    for item in value:
        cleaned = optional_string(item, "type", ENTRY_TYPE_MAX)
        if not cleaned:
            continue
        normalized = entry_type(cleaned, "type")
        if normalized not in out:
            out.append(normalized)
    return out


def _finite_number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a number", field=field) from None
    if not math.isfinite(num):
        raise ValidationError(f"{field} must be a finite number", field=field)
    return num


def importance(value: Any) -> int:
    if value is None or value == "":
        return 0
    num = _finite_number(value, "importance")
    if num < 0 or num > 100:
        raise ValidationError("importance must be between 0 and 100", field="importance")
    # Half-up, so 42.5 -> 43 rather than banker's rounding.
    return int(math.floor(num + 0.5))


def tags(
    value: Any,
    max_tags: int = DEFAULT_MAX_TAGS,
    max_tag_length: int = DEFAULT_MAX_TAG_LENGTH,
) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("tags must be an array of strings", field="tags")
    unique: list[str] = []
    seen: set[str] = set()
    for item in value:
        tag = optional_string(item, "tag", max_tag_length)
        if not tag or tag in seen:
            continue
        seen.add(tag)
        unique.append(tag)
    if len(unique) > max_tags:
        raise ValidationError(f"tags cannot exceed {max_tags} items", field="tags")
    return unique


def entry_tags(value: Any) -> list[str]:
    return tags(value, ENTRY_MAX_TAGS, ENTRY_MAX_TAG_LENGTH)


def embedding(value: Any) -> Optional[list[float]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValidationError("embedding must be an array of numbers", field="embedding")
    if not value:
        return None
    if len(value) > EMBEDDING_MAX_DIMENSIONS:
        raise ValidationError("embedding is too large", field="embedding")
    vector: list[float] = []
    for item in value:
        try:
            vector.append(_finite_number(item, "embedding"))
        except ValidationError:
            raise ValidationError(
                "embedding must contain only numbers", field="embedding"
            ) from None
    return vector


def metadata(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("metadata must be an object", field="metadata")
    return dict(value)


def search_mode(value: Any) -> str:
    if value is None:
        return "fts"
    if value in SEARCH_MODES:
        return value
    raise ValidationError("search_mode must be fts, vector, or hybrid", field="search_mode")


def limit(value: Any, maximum: int) -> Optional[int]:
    if value is None:
        return None
    num = _finite_number(value, "limit")
    if num <= 0:
        raise ValidationError("limit must be a positive number", field="limit")
    return min(int(math.floor(num)), maximum)


def expires_at(value: Any) -> Optional[datetime]:
    raw = optional_string(value, "expires_at", EXPIRES_AT_MAX)
    if raw is None:
        return None
    text = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(
            "expires_at must be an ISO-8601 timestamp", field="expires_at"
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_object(value: Any, field: str = "arguments") -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object", field=field)
    return value


def entry_input(
    params: Any,
    *,
    max_content_chars: int,
    max_title_chars: int,
    max_raw_chars: int,
) -> EntryInput:
    """Normalise the ``entry`` object of an upsert call."""
    data = as_object(params, "entry")
    vector = embedding(data.get("embedding"))
    return EntryInput(
        entry_id=optional_string(data.get("entry_id"), "entry_id", ENTRY_ID_MAX),
        entry_type=required_entry_type(data.get("entry_type")),
        title=optional_string(data.get("title"), "title", max_title_chars),
        content=required_text(data.get("content"), "content", max_content_chars),
        tags=tuple(entry_tags(data.get("tags"))),
        importance=importance(data.get("importance")),
        created_by=optional_string(data.get("created_by"), "created_by", OWNER_MAX),
        expires_at=expires_at(data.get("expires_at")),
        raw_text=optional_text(data.get("raw_text"), "raw_text", max_raw_chars, preserve=True),
        embedding=tuple(vector) if vector is not None else None,
        metadata=metadata(data.get("metadata")),
    )
