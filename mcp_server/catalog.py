"""Static tool, resource and prompt listings served by the dispatcher."""

from __future__ import annotations

from typing import Any, Dict, List

from mcp.types import Prompt, Resource, Tool

from core.normalize import ENTRY_TYPES, SCOPES, SEARCH_MODES

INSTRUCTIONS_URI = "memory://instructions"
INSTRUCTIONS_PROMPT = "memory_instructions"

_STRING = {"type": "string"}
_STRINGS = {"type": "array", "items": {"type": "string"}}
_NUMBER = {"type": "number"}
_BOOLEAN = {"type": "boolean"}
_ENTRY_TYPE = {"type": "string", "enum": list(ENTRY_TYPES)}

# Either ``alias`` or ``namespace`` + ``context_id`` addresses a context.
_ADDRESS = {
    "alias": _STRING,
    "namespace": _STRING,
    "context_id": _STRING,
}

_ENTRY = {
    "type": "object",
    "properties": {
        "entry_id": _STRING,
        "entry_type": _ENTRY_TYPE,
        "title": _STRING,
        "content": _STRING,
        "tags": _STRINGS,
        "importance": _NUMBER,
        "created_by": _STRING,
        "expires_at": _STRING,
        "raw_text": _STRING,
        "embedding": {"type": "array", "items": {"type": "number"}},
        "metadata": {"type": "object"},
    },
    "required": ["entry_type", "content"],
}


def _schema(properties: Dict[str, Any], required: List[str] | None = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


TOOLS: List[Tool] = [
    Tool(
        name="context_create",
        description="Create or update a context bucket.",
        inputSchema=_schema(
            {
                "namespace": _STRING,
                "context_id": _STRING,
                "description": _STRING,
                "tags": _STRINGS,
                "scope": {"type": "string", "enum": list(SCOPES)},
                "owner": _STRING,
                "metadata": {"type": "object"},
            },
            ["namespace", "context_id"],
        ),
    ),
    Tool(
        name="context_list",
        description="List stored contexts.",
        inputSchema=_schema(
            {
                "namespace": _STRING,
                "scope": {"type": "string", "enum": list(SCOPES)},
                "owner": _STRING,
                "tags": _STRINGS,
                "limit": _NUMBER,
            }
        ),
    ),
    Tool(
        name="context_delete",
        description="Delete a context and its entries.",
        inputSchema=_schema(dict(_ADDRESS)),
    ),
    Tool(
        name="context_alias_set",
        description="Create or update a context alias.",
        inputSchema=_schema(dict(_ADDRESS), ["alias", "namespace", "context_id"]),
    ),
    Tool(
        name="context_alias_list",
        description="List context aliases.",
        inputSchema=_schema({"namespace": _STRING, "context_id": _STRING, "limit": _NUMBER}),
    ),
    Tool(
        name="context_alias_get",
        description="Resolve an alias to its namespace/context_id.",
        inputSchema=_schema({"alias": _STRING}, ["alias"]),
    ),
    Tool(
        name="context_alias_delete",
        description="Delete a context alias.",
        inputSchema=_schema({"alias": _STRING}, ["alias"]),
    ),
    Tool(
        name="context_digest",
        description=(
            "Compact view of a context: the latest summary plus the top entries "
            "of each requested type."
        ),
        inputSchema=_schema(
            {
                **_ADDRESS,
                "types": {"type": "array", "items": _ENTRY_TYPE},
                "limit": _NUMBER,
            }
        ),
    ),
    Tool(
        name="entry_upsert",
        description="Create or update an entry inside a context.",
        inputSchema=_schema({**_ADDRESS, "entry": _ENTRY}, ["entry"]),
    ),
    Tool(
        name="entry_latest_upsert",
        description="Upsert a latest entry for a given entry type.",
        inputSchema=_schema({**_ADDRESS, "entry": _ENTRY}, ["entry"]),
    ),
    Tool(
        name="entry_latest_get",
        description="Get the latest entry for a given entry type.",
        inputSchema=_schema(
            {**_ADDRESS, "entry_type": _ENTRY_TYPE, "include_raw": _BOOLEAN},
            ["entry_type"],
        ),
    ),
    Tool(
        name="entry_get",
        description="Fetch a single entry by id.",
        inputSchema=_schema(
            {**_ADDRESS, "entry_id": _STRING, "include_raw": _BOOLEAN},
            ["entry_id"],
        ),
    ),
    Tool(
        name="entry_search",
        description="Search entries within a context.",
        inputSchema=_schema(
            {
                **_ADDRESS,
                "query": _STRING,
                "tags": _STRINGS,
                "types": _STRINGS,
                "limit": _NUMBER,
                "include_expired": _BOOLEAN,
                "search_mode": {"type": "string", "enum": list(SEARCH_MODES)},
                "embedding": {"type": "array", "items": {"type": "number"}},
            }
        ),
    ),
    Tool(
        name="entry_delete",
        description="Delete an entry by id.",
        inputSchema=_schema({**_ADDRESS, "entry_id": _STRING}, ["entry_id"]),
    ),
]

TOOL_NAMES = frozenset(tool.name for tool in TOOLS)

RESOURCES: List[Resource] = [
    Resource(
        uri=INSTRUCTIONS_URI,
        name="Memory Instructions",
        description="How to store compressed memory entries.",
        mimeType="text/plain",
    )
]

PROMPTS: List[Prompt] = [
    Prompt(
        name=INSTRUCTIONS_PROMPT,
        description="Guidance for compressing and storing memory entries.",
        arguments=[],
    )
]


def tools_payload() -> List[Dict[str, Any]]:
    return [tool.model_dump(exclude_none=True, by_alias=True) for tool in TOOLS]


def resources_payload() -> List[Dict[str, Any]]:
    # mode="json" renders the AnyUrl uri as a plain string.
    return [
        resource.model_dump(mode="json", exclude_none=True, by_alias=True)
        for resource in RESOURCES
    ]


def prompts_payload() -> List[Dict[str, Any]]:
    return [prompt.model_dump(exclude_none=True, by_alias=True) for prompt in PROMPTS]
