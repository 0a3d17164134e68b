"""MCP memory tools.

Each handler normalises its arguments, resolves the target context, applies
the write policy where relevant and calls the store. Handlers return a
``ToolResult``; the dispatcher turns it into the ``tools/call`` payload.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import TextContent

from core import normalize
from core.errors import ValidationError
from core.metrics import metrics
from core.models import ContextRef, SearchOptions
from core.policy import WritePolicy, apply_entry_policy
from core.query import MAX_SEARCH_LIMIT
from core.safe_json import dumps_pretty
from core.store import MAX_LIST_LIMIT

DIGEST_TYPES = ("summary", "decision", "fact", "question", "todo")
DIGEST_DEFAULT_LIMIT = 5
DIGEST_MAX_LIMIT = 20

_VECTOR_MODES = ("vector", "hybrid")

ToolHandler = Callable[["MemoryTools", Dict[str, Any]], Awaitable["ToolResult"]]
_TOOLS: Dict[str, ToolHandler] = {}


def tool(name: str):
    """Register a ``MemoryTools`` method as the handler for ``name``."""

    def _register(fn: ToolHandler) -> ToolHandler:
        _TOOLS[name] = fn
        return fn

    return _register


@dataclass
class ToolResult:
    data: Any
    warnings: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        content = [TextContent(type="text", text=dumps_pretty(self.data))]
        if self.warnings:
            content.append(
                TextContent(type="text", text="warnings:\n- " + "\n- ".join(self.warnings))
            )
        return {"content": [c.model_dump(exclude_none=True, by_alias=True) for c in content]}


def registered_tools() -> List[str]:
    return sorted(_TOOLS)


class MemoryTools:
    """Tool handlers bound to one store and one write policy."""

    def __init__(self, store: Any, policy: WritePolicy) -> None:
        self.store = store
        self.policy = policy

    async def call(self, name: str, arguments: Any) -> Dict[str, Any]:
        handler = _TOOLS.get(name)
        if handler is None:
            raise ValidationError(f"unknown tool: {name}", field="name")

        started = time.perf_counter()
        metrics.increment(f"tool.calls.{name}")
        try:
            result = await handler(self, normalize.as_object(arguments))
        except Exception:
            metrics.increment(f"tool.errors.{name}")
            raise
        finally:
            metrics.timing(f"tool.duration_ms.{name}", (time.perf_counter() - started) * 1000.0)
        return result.to_payload()

    async def resolve_context(self, params: Dict[str, Any]) -> ContextRef:
        """Address a context by ``alias`` or by ``namespace`` + ``context_id``."""
        has_alias = params.get("alias") is not None
        has_namespace = params.get("namespace") is not None
        has_context_id = params.get("context_id") is not None

        if has_alias:
            if has_namespace or has_context_id:
                raise ValidationError(
                    "provide alias or namespace/context_id, not both", field="alias"
                )
            alias = normalize.alias(params["alias"])
            ref = await self.store.resolve_context_alias(alias)
            if ref is None:
                raise ValidationError(f"alias not found: {alias}", field="alias")
            return ref

        if not has_namespace or not has_context_id:
            raise ValidationError("namespace and context_id are required")
        return ContextRef(
            namespace=normalize.namespace(params["namespace"]),
            context_id=normalize.context_id(params["context_id"]),
        )

    # --- Contexts -------------------------------------------------------

    @tool("context_create")
    async def context_create(self, params: Dict[str, Any]) -> ToolResult:
        context = await self.store.create_context(
            normalize.namespace(params.get("namespace")),
            normalize.context_id(params.get("context_id")),
            description=normalize.optional_string(
                params.get("description"), "description", normalize.DESCRIPTION_MAX
            ),
            tags=normalize.tags(params["tags"]) if "tags" in params else None,
            scope=normalize.scope(params["scope"]) if "scope" in params else None,
            owner=normalize.optional_string(params.get("owner"), "owner", normalize.OWNER_MAX),
            metadata=normalize.metadata(params["metadata"]) if "metadata" in params else None,
        )
        return ToolResult(context)

    @tool("context_list")
    async def context_list(self, params: Dict[str, Any]) -> ToolResult:
        scope = normalize.optional_string(params.get("scope"), "scope", 16)
        contexts = await self.store.list_contexts(
            namespace=normalize.optional_string(
                params.get("namespace"), "namespace", normalize.NAMESPACE_MAX
            ),
            scope=normalize.scope(scope) if scope else None,
            owner=normalize.optional_string(params.get("owner"), "owner", normalize.OWNER_MAX),
            tags=normalize.entry_tags(params["tags"]) if params.get("tags") is not None else None,
            limit=normalize.limit(params.get("limit"), MAX_LIST_LIMIT),
        )
        return ToolResult(contexts)

    @tool("context_delete")
    async def context_delete(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        deleted = await self.store.delete_context(ref.namespace, ref.context_id)
        return ToolResult({"deleted": deleted})

    @tool("context_digest")
    async def context_digest(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        types = normalize.entry_types(params.get("types")) or list(DIGEST_TYPES)
        per_type = normalize.limit(params.get("limit"), DIGEST_MAX_LIMIT) or DIGEST_DEFAULT_LIMIT
        others = [t for t in types if t != "summary"]

        results = await asyncio.gather(
            self._digest_summary(ref),
            *(
                self.store.search_entries(
                    SearchOptions(
                        namespace=ref.namespace,
                        context_id=ref.context_id,
                        types=(entry_type,),
                        limit=per_type,
                    )
                )
                for entry_type in others
            ),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        summary, *found = results
        return ToolResult(
            {
                "namespace": ref.namespace,
                "context_id": ref.context_id,
                "summary": summary,
                "entries": dict(zip(others, found)),
            }
        )

    async def _digest_summary(self, ref: ContextRef) -> Optional[Dict[str, Any]]:
        latest = await self.store.get_entry(
            ref.namespace, ref.context_id, self.policy.latest_entry_id("summary")
        )
        if latest is not None:
            return latest
        hits = await self.store.search_entries(
            SearchOptions(
                namespace=ref.namespace,
                context_id=ref.context_id,
                types=("summary",),
                limit=1,
            )
        )
        return hits[0] if hits else None

    # --- Aliases --------------------------------------------------------

    @tool("context_alias_set")
    async def context_alias_set(self, params: Dict[str, Any]) -> ToolResult:
        record = await self.store.set_context_alias(
            normalize.alias(params.get("alias")),
            normalize.namespace(params.get("namespace")),
            normalize.context_id(params.get("context_id")),
        )
        return ToolResult(record)

    @tool("context_alias_list")
    async def context_alias_list(self, params: Dict[str, Any]) -> ToolResult:
        aliases = await self.store.list_context_aliases(
            namespace=normalize.optional_string(
                params.get("namespace"), "namespace", normalize.NAMESPACE_MAX
            ),
            context_id=normalize.optional_string(
                params.get("context_id"), "context_id", normalize.CONTEXT_ID_MAX
            ),
            limit=normalize.limit(params.get("limit"), MAX_LIST_LIMIT),
        )
        return ToolResult(aliases)

    @tool("context_alias_get")
    async def context_alias_get(self, params: Dict[str, Any]) -> ToolResult:
        record = await self.store.get_context_alias(normalize.alias(params.get("alias")))
        return ToolResult(record if record is not None else {"found": False})

    @tool("context_alias_delete")
    async def context_alias_delete(self, params: Dict[str, Any]) -> ToolResult:
        deleted = await self.store.delete_context_alias(normalize.alias(params.get("alias")))
        return ToolResult({"deleted": deleted})

    # --- Entries --------------------------------------------------------

    async def _upsert(self, params: Dict[str, Any], *, force_latest: bool) -> ToolResult:
        ref = await self.resolve_context(params)
        opts = self.store.options
        entry = normalize.entry_input(
            params.get("entry"),
            max_content_chars=opts.max_content_chars,
            max_title_chars=opts.max_title_chars,
            max_raw_chars=opts.max_raw_chars,
        )
        outcome = apply_entry_policy(
            self.policy,
            entry,
            namespace=ref.namespace,
            context_id=ref.context_id,
            force_latest=force_latest,
        )
        row = await self.store.upsert_entry(
            ref.namespace,
            ref.context_id,
            outcome.entry,
            replace_existing=outcome.latest,
        )
        return ToolResult(row, outcome.warnings)

    @tool("entry_upsert")
    async def entry_upsert(self, params: Dict[str, Any]) -> ToolResult:
        return await self._upsert(params, force_latest=False)

    @tool("entry_latest_upsert")
    async def entry_latest_upsert(self, params: Dict[str, Any]) -> ToolResult:
        return await self._upsert(params, force_latest=True)

    @tool("entry_latest_get")
    async def entry_latest_get(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        entry_type = normalize.required_entry_type(params.get("entry_type"))
        entry = await self.store.get_entry(
            ref.namespace,
            ref.context_id,
            self.policy.latest_entry_id(entry_type),
            include_raw=bool(params.get("include_raw")),
        )
        return ToolResult(entry if entry is not None else {"found": False})

    @tool("entry_get")
    async def entry_get(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        entry = await self.store.get_entry(
            ref.namespace,
            ref.context_id,
            normalize.required_string(params.get("entry_id"), "entry_id", normalize.ENTRY_ID_MAX),
            include_raw=bool(params.get("include_raw")),
        )
        return ToolResult(entry if entry is not None else {"found": False})

    @tool("entry_search")
    async def entry_search(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        mode = normalize.search_mode(params.get("search_mode"))
        vector = normalize.embedding(params.get("embedding"))

        if mode in _VECTOR_MODES:
            if vector is None:
                raise ValidationError(
                    "embedding is required for vector or hybrid search", field="embedding"
                )
            if not self.policy.vector_enabled:
                raise ValidationError(
                    "vector search requested but pgvector is not enabled", field="search_mode"
                )

        options = SearchOptions(
            namespace=ref.namespace,
            context_id=ref.context_id,
            query=normalize.optional_string(params.get("query"), "query", normalize.QUERY_MAX),
            tags=tuple(normalize.entry_tags(params.get("tags"))),
            types=tuple(normalize.entry_types(params.get("types"))),
            limit=normalize.limit(params.get("limit"), MAX_SEARCH_LIMIT),
            include_expired=bool(params.get("include_expired")),
            search_mode=mode,
            embedding=tuple(vector) if vector is not None else None,
        )
        return ToolResult(await self.store.search_entries(options))

    @tool("entry_delete")
    async def entry_delete(self, params: Dict[str, Any]) -> ToolResult:
        ref = await self.resolve_context(params)
        deleted = await self.store.delete_entry(
            ref.namespace,
            ref.context_id,
            normalize.required_string(params.get("entry_id"), "entry_id", normalize.ENTRY_ID_MAX),
        )
        return ToolResult({"deleted": deleted})
