from __future__ import annotations

import itertools
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from core.errors import NotFoundError
from core.models import ContextRef, EntryInput, SearchOptions
from core.query import clamp_limit
from core.store import StoreOptions


class RecordingDB:
    """Stands in for ``PostgresDB``: records every call, replays queued results."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []
        self._results: dict[str, deque] = defaultdict(deque)

    def will_return(self, method: str, *results: Any) -> None:
        self._results[method].extend(results)

    async def _record(self, method: str, sql: str, args: tuple[Any, ...], default: Any) -> Any:
        self.calls.append((method, sql, args))
        queue = self._results[method]
        result = queue.popleft() if queue else default
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        return await self._record("fetch", sql, args, [])

    async def fetchrow(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        return await self._record("fetchrow", sql, args, None)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        return await self._record("fetchval", sql, args, None)

    async def execute(self, sql: str, *args: Any) -> str:
        return await self._record("execute", sql, args, "DELETE 0")

    async def ping(self) -> bool:
        return True

    def last(self, method: str) -> tuple[str, tuple[Any, ...]]:
        for name, sql, args in reversed(self.calls):
            if name == method:
                return sql, args
        raise AssertionError(f"no {method} call recorded")


class FakeStore:
    """In-memory store with the same contract as ``core.store.MemoryStore``."""

    def __init__(self, options: Optional[StoreOptions] = None) -> None:
        self.options = options or StoreOptions()
        self.contexts: dict[tuple[str, str], dict[str, Any]] = {}
        self.aliases: dict[str, dict[str, Any]] = {}
        self.entries: dict[tuple[str, str], dict[str, dict[str, Any]]] = defaultdict(dict)
        self.searches: list[SearchOptions] = []
        self._seq = itertools.count()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def create_context(self, namespace, context_id, *, description=None, tags=None,
                             scope=None, owner=None, metadata=None):
        key = (namespace, context_id)
        existing = self.contexts.get(key)
        if existing is None:
            existing = {
                "id": uuid.uuid4(),
                "namespace": namespace,
                "context_id": context_id,
                "description": description,
                "tags": list(tags or []),
                "scope": scope or "shared",
                "owner": owner,
                "metadata": dict(metadata or {}),
                "created_at": self._now(),
                "updated_at": self._now(),
            }
            self.contexts[key] = existing
        else:
            if description is not None:
                existing["description"] = description
            if tags is not None:
                existing["tags"] = list(tags)
            if scope is not None:
                existing["scope"] = scope
            if owner is not None:
                existing["owner"] = owner
            existing["metadata"] = {**existing["metadata"], **(metadata or {})}
            existing["updated_at"] = self._now()
        return dict(existing)

    async def list_contexts(self, *, namespace=None, scope=None, owner=None, tags=None, limit=None):
        rows = [
            c for c in self.contexts.values()
            if (not namespace or c["namespace"] == namespace)
            and (not scope or c["scope"] == scope)
            and (not owner or c["owner"] == owner)
            and (not tags or set(tags) & set(c["tags"]))
        ]
        return [dict(c) for c in rows[: limit or 50]]

    async def delete_context(self, namespace, context_id):
        self.entries.pop((namespace, context_id), None)
        return self.contexts.pop((namespace, context_id), None) is not None

    async def set_context_alias(self, alias, namespace, context_id):
        record = {"alias": alias, "namespace": namespace, "context_id": context_id}
        self.aliases[alias] = record
        return dict(record)

    async def list_context_aliases(self, *, namespace=None, context_id=None, limit=None):
        rows = [
            a for a in self.aliases.values()
            if (not namespace or a["namespace"] == namespace)
            and (not context_id or a["context_id"] == context_id)
        ]
        return [dict(a) for a in rows[: limit or 50]]

    async def get_context_alias(self, alias):
        record = self.aliases.get(alias)
        if record is None or (record["namespace"], record["context_id"]) not in self.contexts:
            return None
        return dict(record)

    async def delete_context_alias(self, alias):
        return self.aliases.pop(alias, None) is not None

    async def resolve_context_alias(self, alias):
        record = await self.get_context_alias(alias)
        if record is None:
            return None
        return ContextRef(namespace=record["namespace"], context_id=record["context_id"])

    async def upsert_entry(self, namespace, context_id, entry: EntryInput, *, replace_existing=False):
        key = (namespace, context_id)
        if key not in self.contexts:
            raise NotFoundError("context not found; create it first")
        bucket = self.entries[key]
        if entry.entry_id and not replace_existing and entry.entry_id not in bucket:
            raise NotFoundError("entry not found for context")

        entry_id = entry.entry_id or str(uuid.uuid4())
        previous = bucket.get(entry_id)
        row = {
            "id": entry_id,
            "entry_type": entry.entry_type,
            "title": entry.title,
            "content": entry.content,
            "tags": list(entry.tags),
            "importance": entry.importance,
            "created_by": entry.created_by,
            "metadata": dict(entry.metadata),
            "expires_at": entry.expires_at,
            "embedding": list(entry.embedding) if entry.embedding else None,
            "created_at": previous["created_at"] if previous else self._now(),
            "updated_at": self._now(),
            "_raw": entry.raw_text,
            "_seq": next(self._seq),
        }
        bucket[entry_id] = row
        return self._public(row)

    @staticmethod
    def _public(row, include_raw=False):
        out = {k: v for k, v in row.items() if not k.startswith("_")}
        out["raw_text"] = row["_raw"] if include_raw else None
        return out

    async def get_entry(self, namespace, context_id, entry_id, *, include_raw=False):
        row = self.entries.get((namespace, context_id), {}).get(entry_id)
        if row is None or (namespace, context_id) not in self.contexts:
            return None
        return self._public(row, include_raw)

    async def search_entries(self, options: SearchOptions):
        self.searches.append(options)
        rows = list(self.entries.get((options.namespace, options.context_id), {}).values())
        if options.types:
            rows = [r for r in rows if r["entry_type"] in options.types]
        if options.tags:
            rows = [r for r in rows if set(options.tags) & set(r["tags"])]
        if options.query:
            needle = options.query.lower()
            rows = [r for r in rows if needle in f"{r['title'] or ''} {r['content']}".lower()]
        rows.sort(key=lambda r: (r["importance"], r["_seq"]), reverse=True)
        return [self._public(r) for r in rows[: clamp_limit(options.limit)]]

    async def delete_entry(self, namespace, context_id, entry_id):
        return self.entries.get((namespace, context_id), {}).pop(entry_id, None) is not None

    async def cleanup_expired_entries(self):
        return 0


@pytest.fixture
def recording_db() -> RecordingDB:
    return RecordingDB()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
