from __future__ import annotations

from chat_stream.domain.entities.conversation import Conversation
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=ConversationRef.durable(model.id),
        title=model.title,
        message_count=model.message_count,
        last_preview=model.last_message_preview,
        created_at=model.created_at,
        updated_at=model.updated_at,
        archived=model.archived,
    )
