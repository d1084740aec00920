"""JSON records kept in the key-value store for guest sessions."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, TypeAdapter

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import Conversation
from chat_stream.domain.entities.message import AssistantMessage, Message, SystemMessage, UserMessage
from chat_stream.domain.value_objects.enums import AttachmentStatus, Role
from chat_stream.domain.value_objects.ids import ConversationRef


class StoredAttachment(BaseModel):
    name: str
    type: str
    url: str | None = None
    local_handle: str | None = None
    status: AttachmentStatus = AttachmentStatus.ATTACHED


class StoredMessage(BaseModel):
    id: UUID
    role: Role
    content: str
    timestamp: datetime
    attachments: list[StoredAttachment] = []
    is_pinned: bool = False
    is_edited: bool = False


class StoredConversation(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message_preview: str = ""
    user_id: str = ""
    archived: bool = False


conversation_list = TypeAdapter(list[StoredConversation])
message_list = TypeAdapter(list[StoredMessage])


def record_to_conversation(record: StoredConversation) -> Conversation:
    return Conversation(
        id=ConversationRef.parse(record.id),
        title=record.title,
        message_count=record.message_count,
        last_preview=record.last_message_preview,
        created_at=record.created_at,
        updated_at=record.updated_at,
        archived=record.archived,
    )


def message_to_record(message: Message) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        role=message.role,
        content=message.content,
        timestamp=message.created_at,
        attachments=[
            StoredAttachment(
                name=a.name,
                type=a.type,
                url=a.url,
                local_handle=a.local_handle,
                status=a.status,
            )
            for a in message.attachments
        ],
        is_pinned=message.is_pinned,
        is_edited=isinstance(message, UserMessage) and message.is_edited,
    )


def record_to_message(record: StoredMessage, conversation: ConversationRef) -> Message:
    attachments = tuple(
        Attachment(name=a.name, type=a.type, url=a.url, local_handle=a.local_handle, status=a.status)
        for a in record.attachments
    )
    match record.role:
        case Role.USER:
            return UserMessage(
                id=record.id,
                conversation=conversation,
                content=record.content,
                created_at=record.timestamp,
                attachments=attachments,
                is_pinned=record.is_pinned,
                is_edited=record.is_edited,
            )
        case Role.ASSISTANT:
            # reloaded replies are never streaming
            return AssistantMessage(
                id=record.id,
                conversation=conversation,
                content=record.content,
                created_at=record.timestamp,
                attachments=attachments,
                is_pinned=record.is_pinned,
                is_streaming=False,
            )
        case Role.SYSTEM:
            return SystemMessage(
                id=record.id,
                conversation=conversation,
                content=record.content,
                created_at=record.timestamp,
            )
