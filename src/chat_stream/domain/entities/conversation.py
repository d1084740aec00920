from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_stream.domain.value_objects.ids import ConversationRef


@dataclass(frozen=True, slots=True)
class Conversation:
    id: ConversationRef
    title: str
    message_count: int
    last_preview: str
    created_at: datetime
    updated_at: datetime
    archived: bool = False


DEFAULT_TITLE = "New Conversation"


def preview(text: str, limit: int) -> str:
    """Collapse whitespace and cut to ``limit`` characters for titles and sidebar previews."""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1].rstrip() + "…"
