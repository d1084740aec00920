from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chat_stream.application.dto.draft import PendingDraft
from chat_stream.application.dto.principal import Principal
from chat_stream.application.repositories.conversation import ConversationStore
from chat_stream.domain.value_objects.enums import Track
from chat_stream.domain.value_objects.ids import ConversationRef

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatContext:
    """Per-session state handed to the orchestrator and router.

    Created at session start, torn down with ``close()`` at sign-out or
    disconnect.
    """

    device_id: str
    store: ConversationStore
    principal: Principal | None = None
    drafts: dict[ConversationRef, PendingDraft] = field(default_factory=dict)
    closed: bool = False

    @property
    def user_id(self) -> str:
        return self.principal.subject_id if self.principal else self.device_id

    @property
    def auth_token(self) -> str | None:
        return self.principal.token if self.principal else None

    @property
    def track(self) -> Track:
        return self.store.track

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        dropped = len(self.drafts)
        self.drafts.clear()
        logger.info("Chat context closed for %s (drafts dropped=%d)", self.user_id, dropped)
