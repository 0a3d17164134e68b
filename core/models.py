from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class EntryInput:
    """A normalised entry write, ready for policy checks and storage."""

    entry_type: str
    content: str
    entry_id: Optional[str] = None
    title: Optional[str] = None
    tags: tuple[str, ...] = ()
    importance: int = 0
    created_by: Optional[str] = None
    expires_at: Optional[datetime] = None
    raw_text: Optional[str] = None
    embedding: Optional[tuple[float, ...]] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchOptions:
    namespace: str
    context_id: str
    query: Optional[str] = None
    tags: tuple[str, ...] = ()
    types: tuple[str, ...] = ()
    limit: Optional[int] = None
    include_expired: bool = False
    search_mode: str = "fts"
    embedding: Optional[tuple[float, ...]] = None


@dataclass(frozen=True)
class ContextRef:
    namespace: str
    context_id: str
