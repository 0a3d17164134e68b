"""Write-time business rules applied between normalisation and storage."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from . import normalize
from .errors import ValidationError
from .models import EntryInput

SIZE_PRESSURE_RATIO = 0.8


@dataclass(frozen=True)
class WritePolicy:
    require_tags: bool = False
    auto_tag: bool = False
    allow_raw_text: bool = True
    force_latest_summary: bool = True
    latest_entry_prefix: str = "latest-"
    max_content_chars: int = 4000
    vector_enabled: bool = False

    def latest_entry_id(self, entry_type: str) -> str:
        return f"{self.latest_entry_prefix}{entry_type}"


@dataclass(frozen=True)
class PolicyOutcome:
    entry: EntryInput
    warnings: list[str] = field(default_factory=list)
    # Latest entries are written insert-or-replace under their forced id.
    latest: bool = False


def apply_tag_policy(
    policy: WritePolicy,
    tags: tuple[str, ...],
    namespace: str,
    context_id: str,
    warnings: list[str],
) -> tuple[str, ...]:
    updated = list(tags)
    if policy.auto_tag:
        base_tags = [f"namespace:{namespace}", f"context:{context_id}"]
        added = [tag for tag in base_tags if tag not in updated]
        if added:
            updated.extend(added)
            warnings.append(f"auto-tagged: {', '.join(base_tags)}")

    normalized = normalize.entry_tags(updated)
    if policy.require_tags and not normalized:
        raise ValidationError("tags are required", field="tags")
    return tuple(normalized)


def apply_entry_policy(
    policy: WritePolicy,
    entry: EntryInput,
    *,
    namespace: str,
    context_id: str,
    force_latest: bool = False,
) -> PolicyOutcome:
    """Gate and rewrite an entry write.

    Hard failures raise ``ValidationError`` before anything is persisted;
    advisory conditions are returned as warnings next to the rewritten entry.
    """
    warnings: list[str] = []

    if entry.raw_text and not policy.allow_raw_text:
        raise ValidationError("raw_text is disabled on this server", field="raw_text")
    if entry.embedding and not policy.vector_enabled:
        raise ValidationError(
            "embedding provided but pgvector is not enabled on this server",
            field="embedding",
        )

    entry_id = entry.entry_id
    latest = force_latest or (policy.force_latest_summary and entry.entry_type == "summary")
    if latest:
        forced_id = policy.latest_entry_id(entry.entry_type)
        if entry_id and entry_id != forced_id:
            warnings.append(f"entry_id overridden to {forced_id}")
        entry_id = forced_id

    tags = apply_tag_policy(policy, entry.tags, namespace, context_id, warnings)

    if len(entry.content) > policy.max_content_chars * SIZE_PRESSURE_RATIO:
        warnings.append("content length is near the limit; consider compressing further")
    if entry.raw_text:
        warnings.append("raw_text stored; prefer compressed summaries when possible")

    return PolicyOutcome(
        entry=replace(entry, entry_id=entry_id, tags=tags),
        warnings=warnings,
        latest=latest,
    )
