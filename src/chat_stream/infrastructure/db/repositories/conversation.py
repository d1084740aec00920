from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_stream.application.exceptions import NotFoundError, ValidationError
from chat_stream.config import settings
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import DEFAULT_TITLE, Conversation, preview
from chat_stream.domain.entities.message import Message
from chat_stream.domain.value_objects.enums import Role, Track
from chat_stream.domain.value_objects.ids import ConversationRef
from chat_stream.infrastructure.db.mappers import conversation as conversation_mapper
from chat_stream.infrastructure.db.mappers import message as message_mapper
from chat_stream.infrastructure.db.models.conversation import ConversationModel
from chat_stream.infrastructure.db.models.message import MessageModel

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlConversationStore:
    """Implements application.repositories.conversation.ConversationStore for signed-in users.

    Every call runs in its own session and commits before returning. Rows
    belonging to another user are reported as missing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_id: str,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._user_id = user_id
        self._now = now

    @property
    def track(self) -> Track:
        return Track.DURABLE

    def accepts(self, conversation: ConversationRef) -> bool:
        return conversation.is_durable

    def _check(self, conversation: ConversationRef) -> None:
        if not self.accepts(conversation):
            raise ValidationError(f"Durable storage needs a server-issued id, got {conversation}")

    async def _owned(self, session: AsyncSession, conversation: ConversationRef) -> ConversationModel:
        self._check(conversation)
        model = await session.get(ConversationModel, conversation.as_uuid())
        if model is None or model.user_id != self._user_id:
            raise NotFoundError(f"Conversation {conversation} not found")
        return model

    async def list_conversations(self, *, include_archived: bool = False) -> list[Conversation]:
        stmt = select(ConversationModel).where(ConversationModel.user_id == self._user_id)
        if not include_archived:
            stmt = stmt.where(ConversationModel.archived.is_(False))
        stmt = stmt.order_by(ConversationModel.updated_at.desc(), ConversationModel.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [conversation_mapper.model_to_entity(m) for m in result.scalars().all()]

    async def get(self, conversation: ConversationRef) -> Conversation | None:
        async with self._session_factory() as session:
            try:
                model = await self._owned(session, conversation)
            except NotFoundError:
                return None
            return conversation_mapper.model_to_entity(model)

    async def create_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        now = self._now()
        model = ConversationModel(
            user_id=self._user_id,
            title=preview(title, settings.TITLE_PREVIEW_LENGTH) or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
            logger.info("Conversation %s created for user %s", model.id, self._user_id)
            return conversation_mapper.model_to_entity(model)

    async def load_messages(self, conversation: ConversationRef) -> list[Message]:
        async with self._session_factory() as session:
            await self._owned(session, conversation)
            stmt = (
                select(MessageModel)
                .where(MessageModel.conversation_id == conversation.as_uuid())
                .order_by(MessageModel.position)
            )
            result = await session.execute(stmt)
            return [message_mapper.model_to_entity(m) for m in result.scalars().all()]

    async def append_message_pair(
        self,
        conversation: ConversationRef,
        user_text: str,
        assistant_text: str,
        *,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        now = self._now()
        async with self._session_factory() as session:
            model = await self._owned(session, conversation)
            position = model.message_count
            session.add_all([
                message_mapper.new_model(
                    model.id, position, Role.USER, user_text, now, tuple(attachments),
                ),
                message_mapper.new_model(model.id, position + 1, Role.ASSISTANT, assistant_text, now),
            ])
            model.message_count = position + 2
            model.last_message_preview = preview(assistant_text, settings.MESSAGE_PREVIEW_LENGTH)
            model.updated_at = now
            if model.title == DEFAULT_TITLE and user_text.strip():
                model.title = preview(user_text, settings.TITLE_PREVIEW_LENGTH)
            await session.commit()

    async def sync_messages(self, conversation: ConversationRef, messages: Sequence[Message]) -> None:
        # durable history only grows through append_message_pair
        self._check(conversation)

    async def rename(self, conversation: ConversationRef, title: str) -> None:
        if not title.strip():
            raise ValidationError("Title must not be empty")
        async with self._session_factory() as session:
            model = await self._owned(session, conversation)
            model.title = title.strip()
            model.updated_at = self._now()
            await session.commit()

    async def archive(self, conversation: ConversationRef, archived: bool = True) -> None:
        async with self._session_factory() as session:
            model = await self._owned(session, conversation)
            model.archived = archived
            model.archived_at = self._now() if archived else None
            model.updated_at = self._now()
            await session.commit()

    async def delete(self, conversation: ConversationRef) -> None:
        async with self._session_factory() as session:
            model = await self._owned(session, conversation)
            await session.execute(delete(MessageModel).where(MessageModel.conversation_id == model.id))
            await session.delete(model)
            await session.commit()
            logger.info("Conversation %s deleted by user %s", conversation, self._user_id)
