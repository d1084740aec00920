from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, TypeAlias
from uuid import UUID

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.value_objects.enums import Role
from chat_stream.domain.value_objects.ids import ConversationRef


@dataclass(frozen=True, slots=True)
class UserMessage:
    id: UUID
    conversation: ConversationRef
    content: str
    created_at: datetime
    attachments: tuple[Attachment, ...] = ()
    is_pinned: bool = False
    is_edited: bool = False

    role: ClassVar[Role] = Role.USER

    @property
    def is_streaming(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    id: UUID
    conversation: ConversationRef
    content: str
    created_at: datetime
    attachments: tuple[Attachment, ...] = ()
    is_pinned: bool = False
    is_streaming: bool = True

    role: ClassVar[Role] = Role.ASSISTANT


@dataclass(frozen=True, slots=True)
class SystemMessage:
    """Inline notice, e.g. a failed request. Dismissible; optionally retryable."""

    id: UUID
    conversation: ConversationRef
    content: str
    created_at: datetime
    attachments: tuple[Attachment, ...] = ()
    is_pinned: bool = False
    retryable: bool = False
    retry_of: UUID | None = None

    role: ClassVar[Role] = Role.SYSTEM

    @property
    def is_streaming(self) -> bool:
        return False


Message: TypeAlias = UserMessage | AssistantMessage | SystemMessage
