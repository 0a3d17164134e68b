"""SQL construction for entry search and entry writes.

Queries are assembled from immutable ``Clause`` values. A clause is a SQL
fragment plus at most one binding; placeholders are numbered only when the
whole clause list is rendered, so the position of every binding follows from
the order clauses were added in and nothing else.

Search parameter order is fixed:

    namespace, context_id, [tags], [types], [query], [embedding], limit
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from .models import EntryInput, SearchOptions

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100

ClauseKind = Literal["where", "order", "limit"]

_UNBOUND = object()

FTS_DOCUMENT = "to_tsvector('english', coalesce(e.title, '') || ' ' || e.content)"

SEARCH_COLUMNS = (
    "e.id",
    "e.context_pk",
    "e.entry_type",
    "e.title",
    "e.content",
    "e.tags",
    "e.importance",
    "e.created_by",
    "e.metadata",
    "e.expires_at",
    "e.created_at",
    "e.updated_at",
)


@dataclass(frozen=True)
class Clause:
    """A SQL fragment. ``{p}`` in ``sql`` marks where the binding goes."""

    kind: ClauseKind
    sql: str
    binding: Any = _UNBOUND

    @property
    def bound(self) -> bool:
        return self.binding is not _UNBOUND


@dataclass(frozen=True)
class ClauseList:
    clauses: tuple[Clause, ...] = ()

    def add(self, clause: Clause) -> "ClauseList":
        return ClauseList(self.clauses + (clause,))

    @property
    def next_position(self) -> int:
        return sum(1 for c in self.clauses if c.bound) + 1

    def render(self) -> tuple[dict[str, list[str]], list[Any]]:
        parts: dict[str, list[str]] = {"where": [], "order": [], "limit": []}
        values: list[Any] = []
        for clause in self.clauses:
            if clause.bound:
                values.append(clause.binding)
                parts[clause.kind].append(clause.sql.format(p=f"${len(values)}"))
            else:
                parts[clause.kind].append(clause.sql)
        return parts, values


@dataclass(frozen=True)
class SearchQuery:
    text: str
    values: list[Any]
    # 1-based position of the free-text binding, reused by the rank ordering.
    query_param_index: Optional[int] = None
    uses_vector: bool = False


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_SEARCH_LIMIT
    return max(1, min(int(limit), MAX_SEARCH_LIMIT))


def wants_vector(options: SearchOptions, vector_enabled: bool) -> bool:
    return (
        vector_enabled
        and options.search_mode in ("vector", "hybrid")
        and bool(options.embedding)
    )


def build_search_query(options: SearchOptions, vector_enabled: bool) -> SearchQuery:
    clauses = ClauseList()
    clauses = clauses.add(Clause("where", "c.namespace = {p}", options.namespace))
    clauses = clauses.add(Clause("where", "c.context_id = {p}", options.context_id))

    if not options.include_expired:
        clauses = clauses.add(Clause("where", "(e.expires_at IS NULL OR e.expires_at > now())"))

    if options.tags:
        clauses = clauses.add(Clause("where", "e.tags && {p}::text[]", list(options.tags)))

    if options.types:
        clauses = clauses.add(
            Clause("where", "e.entry_type = ANY({p}::text[])", list(options.types))
        )

    query_text = (options.query or "").strip()
    query_param_index: Optional[int] = None
    if query_text:
        query_param_index = clauses.next_position
        clauses = clauses.add(
            Clause(
                "where",
                f"{FTS_DOCUMENT} @@ websearch_to_tsquery('english', {{p}})",
                query_text,
            )
        )

    use_vector = wants_vector(options, vector_enabled)
    if use_vector:
        clauses = clauses.add(
            Clause(
                "order",
                "e.embedding <-> {p}::vector ASC, e.importance DESC, e.created_at DESC",
                list(options.embedding or ()),
            )
        )
    elif query_param_index is not None:
        clauses = clauses.add(
            Clause(
                "order",
                f"ts_rank_cd({FTS_DOCUMENT}, websearch_to_tsquery('english', "
                f"${query_param_index})) DESC, e.importance DESC, e.created_at DESC",
            )
        )
    else:
        clauses = clauses.add(Clause("order", "e.importance DESC, e.created_at DESC"))

    clauses = clauses.add(Clause("limit", "{p}", clamp_limit(options.limit)))

    parts, values = clauses.render()
    text = (
        f"SELECT {', '.join(SEARCH_COLUMNS)}\n"
        "FROM entries e\n"
        "JOIN contexts c ON e.context_pk = c.id\n"
        f"WHERE {' AND '.join(parts['where'])}\n"
        f"ORDER BY {parts['order'][0]}\n"
        f"LIMIT {parts['limit'][0]}"
    )
    return SearchQuery(
        text=text,
        values=values,
        query_param_index=query_param_index,
        uses_vector=use_vector,
    )


# --- Entry writes -----------------------------------------------------------

_BASE_COLUMNS: tuple[str, ...] = (
    "entry_type",
    "title",
    "content",
    "tags",
    "importance",
    "created_by",
    "raw_text",
    "raw_compressed",
    "metadata",
    "expires_at",
)


class _EntryWritePlan:
    columns: tuple[str, ...] = _BASE_COLUMNS

    def column_values(
        self,
        entry: EntryInput,
        raw_text: Optional[str],
        raw_compressed: Optional[bytes],
    ) -> list[Any]:
        values: list[Any] = [
            entry.entry_type,
            entry.title,
            entry.content,
            list(entry.tags),
            entry.importance,
            entry.created_by,
            raw_text,
            raw_compressed,
            dict(entry.metadata),
            entry.expires_at,
        ]
        if "embedding" in self.columns:
            values.append(list(entry.embedding) if entry.embedding else None)
        return values

    def _insert_head(self) -> str:
        names = ("id", "context_pk") + self.columns
        placeholders = ", ".join(f"${i}" for i in range(1, len(names) + 1))
        return f"INSERT INTO entries ({', '.join(names)})\nVALUES ({placeholders})"

    @property
    def insert_sql(self) -> str:
        """``$1`` id, ``$2`` context_pk, then ``columns`` in order."""
        return f"{self._insert_head()}\nRETURNING *"

    @property
    def update_sql(self) -> str:
        """``columns`` in order, then id, then context_pk."""
        sets = ",\n  ".join(f"{name} = ${i}" for i, name in enumerate(self.columns, 1))
        n = len(self.columns)
        return (
            f"UPDATE entries SET\n  {sets}\n"
            f"WHERE id = ${n + 1} AND context_pk = ${n + 2}\n"
            "RETURNING *"
        )

    @property
    def replace_sql(self) -> str:
        """Insert-or-replace keyed on (context_pk, id); same order as insert."""
        sets = ",\n  ".join(f"{name} = EXCLUDED.{name}" for name in self.columns)
        return (
            f"{self._insert_head()}\n"
            f"ON CONFLICT (context_pk, id) DO UPDATE SET\n  {sets}\n"
            "RETURNING *"
        )


@dataclass(frozen=True)
class PlainPlan(_EntryWritePlan):
    kind: Literal["plain"] = "plain"


@dataclass(frozen=True)
class VectorPlan(_EntryWritePlan):
    kind: Literal["vector"] = "vector"
    columns: tuple[str, ...] = _BASE_COLUMNS + ("embedding",)


WritePlan = Union[PlainPlan, VectorPlan]


def select_write_plan(vector_enabled: bool) -> WritePlan:
    return VectorPlan() if vector_enabled else PlainPlan()
