from __future__ import annotations

import logging
from typing import Sequence

from chat_stream.application.context import ChatContext
from chat_stream.application.dto.draft import PendingDraft
from chat_stream.application.ports.clock import Clock, SystemClock
from chat_stream.config import settings
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.value_objects.enums import StreamOutcome
from chat_stream.domain.value_objects.ids import ConversationRef

logger = logging.getLogger(__name__)


class DraftQueueManager:
    """At most one pending draft per conversation, kept in the session context."""

    def __init__(
        self,
        context: ChatContext,
        *,
        clock: Clock | None = None,
        release_on_cancel: bool | None = None,
    ) -> None:
        self._context = context
        self._clock = clock or SystemClock()
        self._release_on_cancel = (
            settings.DRAFT_RELEASE_ON_CANCEL if release_on_cancel is None else release_on_cancel
        )

    def get(self, conversation: ConversationRef) -> PendingDraft | None:
        return self._context.drafts.get(conversation)

    def queue(
        self,
        conversation: ConversationRef,
        content: str,
        attachments: Sequence[Attachment] = (),
    ) -> PendingDraft:
        draft = PendingDraft(
            conversation=conversation,
            content=content,
            queued_at=self._clock.now(),
            attachments=tuple(attachments),
        )
        replaced = self._context.drafts.get(conversation)
        self._context.drafts[conversation] = draft
        if replaced is not None:
            logger.debug("Draft for %s overwritten", conversation)
        return draft

    def releases(self, outcome: StreamOutcome) -> bool:
        match outcome:
            case StreamOutcome.COMPLETED:
                return True
            case StreamOutcome.CANCELLED:
                return self._release_on_cancel
            case StreamOutcome.FAILED:
                return False

    def on_stream_finished(
        self,
        conversation: ConversationRef,
        outcome: StreamOutcome,
        active: ConversationRef | None,
    ) -> PendingDraft | None:
        """Hand back the draft to auto-submit, clearing it, or None to keep waiting."""
        if conversation != active or not self.releases(outcome):
            return None
        draft = self._context.drafts.pop(conversation, None)
        if draft is not None:
            logger.info("Releasing queued draft for %s after %s stream", conversation, outcome)
        return draft

    def discard(self, conversation: ConversationRef) -> PendingDraft | None:
        return self._context.drafts.pop(conversation, None)

    def rekey(self, old: ConversationRef, new: ConversationRef) -> None:
        draft = self._context.drafts.pop(old, None)
        if draft is not None:
            self._context.drafts[new] = PendingDraft(
                conversation=new,
                content=draft.content,
                queued_at=draft.queued_at,
                attachments=draft.attachments,
            )
