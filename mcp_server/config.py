"""MCP server configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from core.policy import WritePolicy


class MCPSettings(BaseSettings):
    """MCP server settings."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_", extra="ignore")

    # Server
    server_name: str = "context-memory"
    server_version: str = "0.1.0"
    protocol_version: str = "2024-11-05"

    # Write policy
    require_tags: bool = False
    # Adds namespace:<ns> and context:<id> tags to every entry.
    auto_tag: bool = False
    allow_raw_text: bool = True
    # Plain entry_upsert of a summary is redirected to the latest-summary id.
    force_latest_summary: bool = True
    latest_entry_prefix: str = "latest-"

    def write_policy(self, *, max_content_chars: int, vector_enabled: bool) -> WritePolicy:
        return WritePolicy(
            require_tags=self.require_tags,
            auto_tag=self.auto_tag,
            allow_raw_text=self.allow_raw_text,
            force_latest_summary=self.force_latest_summary,
            latest_entry_prefix=self.latest_entry_prefix,
            max_content_chars=max_content_chars,
            vector_enabled=vector_enabled,
        )


mcp_settings = MCPSettings()
