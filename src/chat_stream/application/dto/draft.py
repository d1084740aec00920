from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.value_objects.ids import ConversationRef


@dataclass(frozen=True, slots=True)
class PendingDraft:
    """A message typed while a reply was still streaming, held until it ends."""

    conversation: ConversationRef
    content: str
    queued_at: datetime
    attachments: tuple[Attachment, ...] = ()
