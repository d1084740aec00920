"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import Conversation
from chat_stream.domain.entities.message import Message, SystemMessage, UserMessage
from chat_stream.domain.value_objects.enums import ConversationFilter, InputKind


class WsInbound(BaseModel):
    """Client → Server."""

    type: str  # message.send | stream.stop | viewport.scroll | conversation.select | ping ...
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # message.added | render.text | scroll.to | stream.finished | error | pong ...
    data: dict[str, Any] = {}


# -- inbound payloads ------------------------------------------------------


class SendData(BaseModel):
    content: str


class AttachmentAddData(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str
    size: int | None = Field(None, ge=0)


class AttachmentRefData(BaseModel):
    handle: str


class AttachmentUploadedData(AttachmentRefData):
    url: str


class AttachmentFailedData(AttachmentRefData):
    error: str = "Upload failed"


class MessageRefData(BaseModel):
    message_id: UUID


class OptionalMessageRefData(BaseModel):
    message_id: UUID | None = None


class EditData(BaseModel):
    message_id: UUID
    content: str


class ConversationData(BaseModel):
    conversation_id: str


class RenameData(BaseModel):
    conversation_id: str
    title: str = Field(min_length=1, max_length=255)


class ArchiveData(BaseModel):
    conversation_id: str
    archived: bool = True


class ListData(BaseModel):
    filter: ConversationFilter = ConversationFilter.ACTIVE
    search: str | None = None


class ScrollData(BaseModel):
    """Geometry reported by the client viewport."""

    scroll_top: float
    scroll_height: float
    client_height: float
    user_initiated: bool = True
    input_kind: InputKind | None = None


class LayoutData(BaseModel):
    scroll_top: float | None = None
    scroll_height: float | None = None
    client_height: float | None = None
    offsets: dict[UUID, float] = {}


# -- outbound payloads -----------------------------------------------------


def attachment_payload(attachment: Attachment) -> dict[str, Any]:
    return {
        "handle": attachment.local_handle,
        "name": attachment.name,
        "type": attachment.type,
        "url": attachment.url,
        "status": attachment.status,
        "error": attachment.error,
    }


def message_payload(message: Message) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": str(message.id),
        "conversation_id": str(message.conversation),
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
        "is_streaming": message.is_streaming,
        "is_pinned": message.is_pinned,
        "attachments": [attachment_payload(a) for a in message.attachments],
    }
    match message:
        case UserMessage(is_edited=is_edited):
            data["is_edited"] = is_edited
        case SystemMessage(retryable=retryable, retry_of=retry_of):
            data["retryable"] = retryable
            data["retry_of"] = str(retry_of) if retry_of else None
    return data


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": str(conversation.id),
        "title": conversation.title,
        "message_count": conversation.message_count,
        "last_message_preview": conversation.last_preview,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "archived": conversation.archived,
    }
