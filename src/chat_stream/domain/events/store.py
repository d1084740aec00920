"""Notifications emitted by the message store after each applied mutation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias
from uuid import UUID

from chat_stream.domain.entities.message import Message
from chat_stream.domain.value_objects.ids import ConversationRef


@dataclass(frozen=True, slots=True)
class MessageAdded:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageUpdated:
    message: Message
    delta: str = ""


@dataclass(frozen=True, slots=True)
class MessageFinalized:
    message: Message
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class MessageRemoved:
    conversation: ConversationRef
    message_id: UUID


@dataclass(frozen=True, slots=True)
class LogSwapped:
    previous: ConversationRef | None
    current: ConversationRef | None


StoreEvent: TypeAlias = MessageAdded | MessageUpdated | MessageFinalized | MessageRemoved | LogSwapped
