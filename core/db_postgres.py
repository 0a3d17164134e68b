from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import asyncpg

from .config import settings
from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DbInfo:
    vector_extension: bool
    embedding_column: bool


def encode_vector(value: Any) -> str:
    return "[" + ",".join(repr(float(v)) for v in value) + "]"


def decode_vector(value: str) -> list[float]:
    inner = value.strip()[1:-1]
    return [float(v) for v in inner.split(",")] if inner else []


async def _init_connection(conn: Any) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )
    vector_schema = await conn.fetchval(
        "SELECT n.nspname FROM pg_type t "
        "JOIN pg_namespace n ON n.oid = t.typnamespace "
        "WHERE t.typname = 'vector' LIMIT 1"
    )
    if vector_schema:
        await conn.set_type_codec(
            "vector",
            encoder=encode_vector,
            decoder=decode_vector,
            schema=vector_schema,
            format="text",
        )


class PostgresDB:
    """Thin async PostgreSQL helper around an asyncpg pool.

    The pool is created lazily on first use. Every connection gets a jsonb
    codec, and a pgvector codec when the extension is installed, so callers
    pass and receive plain dicts and lists.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool = None

    @property
    def dsn(self) -> str:
        return self._dsn or settings.dsn

    async def init(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self._min_size or settings.pool_min_size,
                max_size=self._max_size or settings.pool_max_size,
                init=_init_connection,
            )
        except (OSError, asyncpg.PostgresError) as e:
            raise StoreUnavailableError(f"cannot connect to postgres: {e}") from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        if self._pool is None:
            await self.init()
        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, sql: str, *args: Any) -> str:
        async with self.connection() as conn:
            return await conn.execute(sql, *args)

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        async with self.connection() as conn:
            rows = await conn.fetch(sql, *args)
            return [dict(r) for r in rows]

    async def fetchrow(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        async with self.connection() as conn:
            row = await conn.fetchrow(sql, *args)
            return dict(row) if row else None

    async def fetchval(self, sql: str, *args: Any) -> Any:
        async with self.connection() as conn:
            return await conn.fetchval(sql, *args)

    async def ping(self) -> bool:
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError, StoreUnavailableError) as e:
            logger.warning("postgres ping failed: %s", e)
            return False

    async def detect_info(self) -> DbInfo:
        vector_extension = await self.fetchval(
            "SELECT 1 FROM pg_extension WHERE extname = 'vector'"
        )
        embedding_column = await self.fetchval(
            "SELECT 1 FROM information_schema.columns "
            "WHERE table_name = 'entries' AND column_name = 'embedding'"
        )
        return DbInfo(
            vector_extension=bool(vector_extension),
            embedding_column=bool(embedding_column),
        )


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command tag such as ``DELETE 3``."""
    try:
        return int((status or "").rsplit(" ", 1)[-1])
    except ValueError:
        return 0
