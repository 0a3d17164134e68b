"""Persistence for contexts, aliases and entries on PostgreSQL."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import asyncpg

from .compression import decompress_text, prepare_raw
from .db_postgres import PostgresDB, affected_rows
from .errors import NotFoundError, ValidationError
from .models import ContextRef, EntryInput, SearchOptions
from .query import Clause, ClauseList, build_search_query, select_write_plan

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


@dataclass(frozen=True)
class StoreOptions:
    max_content_chars: int = 4_000
    max_title_chars: int = 200
    max_raw_chars: int = 20_000
    store_raw_plaintext: bool = False
    vector_enabled: bool = False


def _list_limit(limit: Optional[int]) -> int:
    return min(limit or DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)


def _render_list_query(table: str, clauses: ClauseList, limit: Optional[int]) -> tuple[str, list[Any]]:
    clauses = clauses.add(Clause("limit", "{p}", _list_limit(limit)))
    parts, values = clauses.render()
    where = f"WHERE {' AND '.join(parts['where'])}\n" if parts["where"] else ""
    return (
        f"SELECT * FROM {table}\n{where}ORDER BY updated_at DESC\nLIMIT {parts['limit'][0]}",
        values,
    )


def _public_entry(row: dict[str, Any], raw_text: Optional[str] = None) -> dict[str, Any]:
    out = {k: v for k, v in row.items() if k not in ("raw_compressed", "raw_text")}
    out["raw_text"] = raw_text
    return out


class MemoryStore:
    """Context, alias and entry operations.

    Uniqueness of contexts and aliases is left to the database's
    ``ON CONFLICT`` handling; nothing here takes application-level locks.
    """

    def __init__(self, db: PostgresDB, options: Optional[StoreOptions] = None) -> None:
        self._db = db
        self.options = options or StoreOptions()
        self._write_plan = select_write_plan(self.options.vector_enabled)

    # --- Contexts -------------------------------------------------------

    async def create_context(
        self,
        namespace: str,
        context_id: str,
        *,
        description: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        scope: Optional[str] = None,
        owner: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        row = await self._db.fetchrow(
            """
            INSERT INTO contexts (
              id, namespace, context_id, description, tags, scope, owner, metadata
            ) VALUES (
              $1, $2, $3, $4,
              COALESCE($5::text[], '{}'::text[]),
              COALESCE($6, 'shared'),
              $7,
              COALESCE($8::jsonb, '{}'::jsonb)
            )
            ON CONFLICT (namespace, context_id) DO UPDATE SET
              description = COALESCE(EXCLUDED.description, contexts.description),
              tags = CASE WHEN $5::text[] IS NULL THEN contexts.tags ELSE EXCLUDED.tags END,
              scope = COALESCE($6, contexts.scope),
              owner = COALESCE(EXCLUDED.owner, contexts.owner),
              metadata = contexts.metadata || COALESCE($8::jsonb, '{}'::jsonb)
            RETURNING *
            """,
            uuid.uuid4(),
            namespace,
            context_id,
            description,
            list(tags) if tags is not None else None,
            scope,
            owner,
            metadata,
        )
        return row

    async def list_contexts(
        self,
        *,
        namespace: Optional[str] = None,
        scope: Optional[str] = None,
        owner: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        clauses = ClauseList()
        if namespace:
            clauses = clauses.add(Clause("where", "namespace = {p}", namespace))
        if scope:
            clauses = clauses.add(Clause("where", "scope = {p}", scope))
        if owner:
            clauses = clauses.add(Clause("where", "owner = {p}", owner))
        if tags:
            clauses = clauses.add(Clause("where", "tags && {p}::text[]", list(tags)))
        sql, values = _render_list_query("contexts", clauses, limit)
        return await self._db.fetch(sql, *values)

    async def delete_context(self, namespace: str, context_id: str) -> bool:
        status = await self._db.execute(
            "DELETE FROM contexts WHERE namespace = $1 AND context_id = $2",
            namespace,
            context_id,
        )
        return affected_rows(status) > 0

    # --- Aliases --------------------------------------------------------

    async def set_context_alias(self, alias: str, namespace: str, context_id: str) -> dict[str, Any]:
        return await self._db.fetchrow(
            """
            INSERT INTO context_aliases (alias, namespace, context_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (alias) DO UPDATE SET
              namespace = EXCLUDED.namespace,
              context_id = EXCLUDED.context_id
            RETURNING *
            """,
            alias,
            namespace,
            context_id,
        )

    async def list_context_aliases(
        self,
        *,
        namespace: Optional[str] = None,
        context_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        clauses = ClauseList()
        if namespace:
            clauses = clauses.add(Clause("where", "namespace = {p}", namespace))
        if context_id:
            clauses = clauses.add(Clause("where", "context_id = {p}", context_id))
        sql, values = _render_list_query("context_aliases", clauses, limit)
        return await self._db.fetch(sql, *values)

    async def get_context_alias(self, alias: str) -> Optional[dict[str, Any]]:
        """Alias record, or None when the alias or its target context is gone."""
        return await self._db.fetchrow(
            """
            SELECT a.*
            FROM context_aliases a
            JOIN contexts c ON c.namespace = a.namespace AND c.context_id = a.context_id
            WHERE a.alias = $1
            """,
            alias,
        )

    async def delete_context_alias(self, alias: str) -> bool:
        status = await self._db.execute("DELETE FROM context_aliases WHERE alias = $1", alias)
        return affected_rows(status) > 0

    async def resolve_context_alias(self, alias: str) -> Optional[ContextRef]:
        """Target of ``alias``, or None when the alias or its context is gone."""
        row = await self._db.fetchrow(
            """
            SELECT a.namespace, a.context_id
            FROM context_aliases a
            JOIN contexts c ON c.namespace = a.namespace AND c.context_id = a.context_id
            WHERE a.alias = $1
            """,
            alias,
        )
        if row is None:
            return None
        return ContextRef(namespace=row["namespace"], context_id=row["context_id"])

    # --- Entries --------------------------------------------------------

    def _check_limits(self, entry: EntryInput) -> None:
        opts = self.options
        if len(entry.content) > opts.max_content_chars:
            raise ValidationError(
                f"content exceeds {opts.max_content_chars} characters", field="content"
            )
        if entry.title and len(entry.title) > opts.max_title_chars:
            raise ValidationError(
                f"title exceeds {opts.max_title_chars} characters", field="title"
            )
        if entry.raw_text and len(entry.raw_text) > opts.max_raw_chars:
            raise ValidationError(
                f"raw_text exceeds {opts.max_raw_chars} characters", field="raw_text"
            )
        if entry.embedding and not opts.vector_enabled:
            raise ValidationError(
                "embedding provided but pgvector is not enabled", field="embedding"
            )

    async def _context_pk(self, namespace: str, context_id: str) -> Optional[Any]:
        return await self._db.fetchval(
            "SELECT id FROM contexts WHERE namespace = $1 AND context_id = $2",
            namespace,
            context_id,
        )

    async def upsert_entry(
        self,
        namespace: str,
        context_id: str,
        entry: EntryInput,
        *,
        replace_existing: bool = False,
    ) -> dict[str, Any]:
        """Insert or update an entry.

        Without ``entry_id`` a new row is inserted under a fresh id. With an
        ``entry_id`` the existing row is updated and a missing row is an error,
        unless ``replace_existing`` is set, in which case the row is created
        or overwritten under that id.
        """
        self._check_limits(entry)
        context_pk = await self._context_pk(namespace, context_id)
        if context_pk is None:
            raise NotFoundError("context not found; create it first")

        raw = await prepare_raw(entry.raw_text, store_plaintext=self.options.store_raw_plaintext)
        plan = self._write_plan
        values = plan.column_values(entry, raw.raw_text, raw.raw_compressed)

        try:
            if entry.entry_id and not replace_existing:
                row = await self._db.fetchrow(
                    plan.update_sql, *values, entry.entry_id, context_pk
                )
                if row is None:
                    raise NotFoundError("entry not found for context")
            else:
                entry_id = entry.entry_id or str(uuid.uuid4())
                sql = plan.replace_sql if entry.entry_id else plan.insert_sql
                row = await self._db.fetchrow(sql, entry_id, context_pk, *values)
        except asyncpg.ForeignKeyViolationError:
            # Context deleted between lookup and write.
            raise NotFoundError("context not found; create it first") from None

        return _public_entry(row)

    async def get_entry(
        self,
        namespace: str,
        context_id: str,
        entry_id: str,
        *,
        include_raw: bool = False,
    ) -> Optional[dict[str, Any]]:
        row = await self._db.fetchrow(
            """
            SELECT e.*
            FROM entries e
            JOIN contexts c ON e.context_pk = c.id
            WHERE c.namespace = $1 AND c.context_id = $2 AND e.id = $3
            """,
            namespace,
            context_id,
            entry_id,
        )
        if row is None:
            return None
        if not include_raw:
            return _public_entry(row)
        raw_text = row.get("raw_text")
        if raw_text is None and row.get("raw_compressed"):
            raw_text = await decompress_text(row["raw_compressed"])
        return _public_entry(row, raw_text)

    async def search_entries(self, options: SearchOptions) -> list[dict[str, Any]]:
        query = build_search_query(options, self.options.vector_enabled)
        rows = await self._db.fetch(query.text, *query.values)
        return [_public_entry(r) for r in rows]

    async def delete_entry(self, namespace: str, context_id: str, entry_id: str) -> bool:
        status = await self._db.execute(
            """
            DELETE FROM entries e
            USING contexts c
            WHERE e.context_pk = c.id
              AND c.namespace = $1 AND c.context_id = $2 AND e.id = $3
            """,
            namespace,
            context_id,
            entry_id,
        )
        return affected_rows(status) > 0

    async def cleanup_expired_entries(self) -> int:
        status = await self._db.execute(
            "DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= now()"
        )
        removed = affected_rows(status)
        if removed:
            logger.info("expired entries removed", extra={"removed": removed})
        return removed
