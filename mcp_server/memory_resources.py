"""MCP memory resources and prompts."""

from __future__ import annotations

from typing import Any, Dict

from mcp.types import PromptMessage, TextContent

from core.errors import ValidationError
from mcp_server.catalog import INSTRUCTIONS_PROMPT, INSTRUCTIONS_URI

MEMORY_PROMPT = (
    "You are writing to a long-term memory store. The LLM context window is "
    "short-term memory; this MCP is durable memory.\n"
    "\n"
    "Rules:\n"
    "- Always specify namespace + context_id on every write/read.\n"
    "- Store compressed knowledge only: summaries, facts, decisions, open "
    "questions, and small snippets.\n"
    "- Do not dump entire documents unless explicitly needed.\n"
    "- Prefer concise, structured entries with tags and importance.\n"
    "- Update or supersede entries instead of appending duplicates.\n"
    "\n"
    "Suggested entry types:\n"
    "- summary: 3-7 bullet summary of current state.\n"
    "- fact: stable facts that should not be re-derived.\n"
    "- decision: what was decided and why.\n"
    "- question: unresolved item or risk.\n"
    "- snippet: short code or command that is critical.\n"
    "\n"
    "If you store raw text, keep it small and mark why it is durable."
)


def read_resource(uri: str) -> Dict[str, Any]:
    """``resources/read`` result for ``uri``."""
    if uri != INSTRUCTIONS_URI:
        raise ValidationError("Unknown resource", field="uri")
    return {
        "contents": [
            {
                "uri": uri,
                "mimeType": "text/plain",
                "text": MEMORY_PROMPT,
            }
        ]
    }


def get_prompt(name: str) -> Dict[str, Any]:
    """``prompts/get`` result for ``name``.

    The prompt protocol only carries ``user`` and ``assistant`` roles, so the
    instructions go out as a single user message.
    """
    if name != INSTRUCTIONS_PROMPT:
        raise ValidationError("Unknown prompt", field="name")
    message = PromptMessage(
        role="user",
        content=TextContent(type="text", text=MEMORY_PROMPT),
    )
    return {
        "description": "Guidance for compressing and storing memory entries.",
        "messages": [message.model_dump(exclude_none=True, by_alias=True)],
    }
