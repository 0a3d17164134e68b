from __future__ import annotations

import asyncio
import gzip
import uuid

import asyncpg
import pytest

from core.errors import NotFoundError, ValidationError
from core.models import EntryInput, SearchOptions
from core.store import MemoryStore, StoreOptions

CONTEXT_PK = uuid.UUID("00000000-0000-0000-0000-00000000c0de")
RAW = "  first line\n\tsecond line with tab\r\nthird  "


def _row(**overrides):
    row = {
        "id": "e1",
        "context_pk": CONTEXT_PK,
        "entry_type": "fact",
        "title": None,
        "content": "c",
        "tags": [],
        "importance": 0,
        "created_by": None,
        "raw_text": None,
        "raw_compressed": None,
        "metadata": {},
        "expires_at": None,
    }
    row.update(overrides)
    return row


def _run(coro):
    return asyncio.run(coro)


class TestContexts:
    def test_create_passes_null_for_omitted_fields(self, recording_db):
        recording_db.will_return("fetchrow", {"namespace": "repo", "context_id": "app"})
        store = MemoryStore(recording_db)
        _run(store.create_context("repo", "app", description="d"))
        sql, args = recording_db.last("fetchrow")
        assert "ON CONFLICT (namespace, context_id) DO UPDATE" in sql
        assert "contexts.metadata ||" in sql
        assert args[1:] == ("repo", "app", "d", None, None, None, None)

    def test_list_contexts_filters_and_limit(self, recording_db):
        store = MemoryStore(recording_db)
        _run(store.list_contexts(namespace="repo", tags=["a"], limit=500))
        sql, args = recording_db.last("fetch")
        assert "namespace = $1" in sql
        assert "tags && $2::text[]" in sql
        assert "ORDER BY updated_at DESC" in sql
        assert args == ("repo", ["a"], 200)

    def test_list_aliases_default_limit(self, recording_db):
        store = MemoryStore(recording_db)
        _run(store.list_context_aliases())
        sql, args = recording_db.last("fetch")
        assert "WHERE" not in sql
        assert args == (50,)

    def test_delete_reports_whether_a_row_went(self, recording_db):
        recording_db.will_return("execute", "DELETE 1", "DELETE 0")
        store = MemoryStore(recording_db)
        assert _run(store.delete_context("repo", "app")) is True
        assert _run(store.delete_context_alias("gone")) is False

    def test_resolve_alias_uses_live_context(self, recording_db):
        recording_db.will_return("fetchrow", {"namespace": "repo", "context_id": "app"}, None)
        store = MemoryStore(recording_db)
        ref = _run(store.resolve_context_alias("main"))
        assert (ref.namespace, ref.context_id) == ("repo", "app")
        sql, _ = recording_db.last("fetchrow")
        assert "JOIN contexts" in sql
        # target context deleted: the alias no longer resolves
        assert _run(store.resolve_context_alias("main")) is None


class TestUpsert:
    def test_missing_context(self, recording_db):
        store = MemoryStore(recording_db)
        with pytest.raises(NotFoundError, match="context not found; create it first"):
            _run(store.upsert_entry("repo", "app", EntryInput(entry_type="fact", content="c")))

    def test_insert_generates_uuid(self, recording_db):
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", _row())
        store = MemoryStore(recording_db)
        _run(store.upsert_entry("repo", "app", EntryInput(entry_type="fact", content="c")))
        sql, args = recording_db.last("fetchrow")
        assert sql.startswith("INSERT INTO entries")
        assert "ON CONFLICT" not in sql
        assert str(uuid.UUID(args[0])) == args[0]
        assert args[1] == CONTEXT_PK

    def test_update_unknown_id_is_not_found(self, recording_db):
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", None)
        store = MemoryStore(recording_db)
        entry = EntryInput(entry_type="fact", content="c", entry_id="nope")
        with pytest.raises(NotFoundError, match="entry not found for context"):
            _run(store.upsert_entry("repo", "app", entry))
        sql, args = recording_db.last("fetchrow")
        assert sql.startswith("UPDATE entries")
        assert args[-2:] == ("nope", CONTEXT_PK)

    def test_replace_existing_uses_conflict_upsert(self, recording_db):
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", _row(id="latest-summary"))
        store = MemoryStore(recording_db)
        entry = EntryInput(entry_type="summary", content="B", entry_id="latest-summary")
        _run(store.upsert_entry("repo", "app", entry, replace_existing=True))
        sql, args = recording_db.last("fetchrow")
        assert "ON CONFLICT (context_pk, id)" in sql
        assert args[0] == "latest-summary"

    def test_context_deleted_mid_write(self, recording_db):
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", asyncpg.ForeignKeyViolationError("fk"))
        store = MemoryStore(recording_db)
        with pytest.raises(NotFoundError):
            _run(store.upsert_entry("repo", "app", EntryInput(entry_type="fact", content="c")))

    def test_limits_checked_before_any_query(self, recording_db):
        store = MemoryStore(recording_db, StoreOptions(max_content_chars=3))
        with pytest.raises(ValidationError):
            _run(store.upsert_entry("repo", "app", EntryInput(entry_type="fact", content="long")))
        assert recording_db.calls == []

    def test_embedding_rejected_without_vector(self, recording_db):
        store = MemoryStore(recording_db)
        entry = EntryInput(entry_type="fact", content="c", embedding=(1.0,))
        with pytest.raises(ValidationError):
            _run(store.upsert_entry("repo", "app", entry))

    def test_returned_record_never_carries_raw(self, recording_db):
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", _row(raw_compressed=b"\x1f\x8b", raw_text=None))
        store = MemoryStore(recording_db)
        out = _run(store.upsert_entry(
            "repo", "app", EntryInput(entry_type="fact", content="c", raw_text=RAW)
        ))
        assert "raw_compressed" not in out
        assert out["raw_text"] is None


class TestRawRoundTrip:
    def _write_then_read(self, recording_db, options: StoreOptions):
        store = MemoryStore(recording_db, options)
        recording_db.will_return("fetchval", CONTEXT_PK)
        recording_db.will_return("fetchrow", _row())
        _run(store.upsert_entry(
            "repo", "app", EntryInput(entry_type="fact", content="c", raw_text=RAW)
        ))
        _, args = recording_db.last("fetchrow")
        # insert args: id, context_pk, entry_type, title, content, tags,
        # importance, created_by, raw_text, raw_compressed, ...
        raw_text, raw_compressed = args[8], args[9]
        recording_db.will_return(
            "fetchrow", _row(raw_text=raw_text, raw_compressed=raw_compressed)
        )
        return raw_text, raw_compressed, _run(store.get_entry("repo", "app", "e1", include_raw=True))

    def test_compressed_mode(self, recording_db):
        raw_text, raw_compressed, entry = self._write_then_read(recording_db, StoreOptions())
        assert raw_text is None
        assert gzip.decompress(raw_compressed).decode("utf-8") == RAW
        assert entry["raw_text"] == RAW
        assert "raw_compressed" not in entry

    def test_plaintext_mode(self, recording_db):
        raw_text, raw_compressed, entry = self._write_then_read(
            recording_db, StoreOptions(store_raw_plaintext=True)
        )
        assert raw_compressed is None
        assert raw_text == RAW
        assert entry["raw_text"] == RAW

    def test_raw_withheld_by_default(self, recording_db):
        recording_db.will_return("fetchrow", _row(raw_text=RAW))
        store = MemoryStore(recording_db)
        entry = _run(store.get_entry("repo", "app", "e1"))
        assert entry["raw_text"] is None

    def test_missing_entry(self, recording_db):
        store = MemoryStore(recording_db)
        assert _run(store.get_entry("repo", "app", "e1")) is None


class TestSearchAndCleanup:
    def test_search_executes_built_query(self, recording_db):
        recording_db.will_return("fetch", [_row(raw_text="x")])
        store = MemoryStore(recording_db)
        rows = _run(store.search_entries(SearchOptions(namespace="repo", context_id="app", types=("decision",))))
        sql, args = recording_db.last("fetch")
        assert args == ("repo", "app", ["decision"], 20)
        assert "JOIN contexts c" in sql
        assert rows[0]["raw_text"] is None

    def test_cleanup_returns_count(self, recording_db):
        recording_db.will_return("execute", "DELETE 3")
        store = MemoryStore(recording_db)
        assert _run(store.cleanup_expired_entries()) == 3
        sql, _ = recording_db.last("execute")
        assert "expires_at <= now()" in sql
