from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.message import AssistantMessage, Message, SystemMessage, UserMessage
from chat_stream.domain.value_objects.enums import AttachmentStatus, Role
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.db.models.message import MessageModel


def _attachments(raw: list[dict[str, Any]] | None) -> tuple[Attachment, ...]:
    return tuple(
        Attachment(
            name=item["name"],
            type=item["type"],
            url=item.get("url"),
            status=AttachmentStatus(item.get("status", AttachmentStatus.ATTACHED)),
        )
        for item in raw or ()
    )


def model_to_entity(model: MessageModel) -> Message:
    conversation = ConversationRef.durable(model.conversation_id)
    attachments = _attachments(model.attachments)
    match Role(model.role):
        case Role.USER:
            return UserMessage(model.id, conversation, model.content, model.created_at, attachments)
        case Role.ASSISTANT:
            return AssistantMessage(
                model.id, conversation, model.content, model.created_at, attachments, is_streaming=False,
            )
        case Role.SYSTEM:
            return SystemMessage(model.id, conversation, model.content, model.created_at)


def new_model(
    conversation_id: UUID,
    position: int,
    role: Role,
    content: str,
    created_at: datetime,
    attachments: tuple[Attachment, ...] = (),
) -> MessageModel:
    return MessageModel(
        conversation_id=conversation_id,
        position=position,
        role=role.value,
        content=content,
        created_at=created_at,
        attachments=[
            {"name": a.name, "type": a.type, "url": a.url, "status": a.status.value}
            for a in attachments
        ] or None,
    )
