from __future__ import annotations

from typing import Protocol, Sequence

from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.entities.conversation import Conversation
from chat_stream.domain.entities.message import Message
from chat_stream.domain.value_objects.enums import Track
from chat_stream.domain.value_objects.ids import ConversationRef


class ConversationStore(Protocol):
    """Persistence capability for one session.

    Two implementations exist (ephemeral/local and durable/remote); exactly
    one is selected when the session context is opened.
    """

    @property
    def track(self) -> Track: ...

    def accepts(self, conversation: ConversationRef) -> bool:
        """Whether this track may persist the given ref."""
        ...

    async def list_conversations(self, *, include_archived: bool = False) -> list[Conversation]:
        """Most recently updated first."""
        ...

    async def get(self, conversation: ConversationRef) -> Conversation | None: ...

    async def create_conversation(self, title: str) -> Conversation: ...

    async def load_messages(self, conversation: ConversationRef) -> list[Message]: ...

    async def append_message_pair(
        self,
        conversation: ConversationRef,
        user_text: str,
        assistant_text: str,
        *,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        """Record a finalized exchange. Only called after a successful stream."""
        ...

    async def sync_messages(self, conversation: ConversationRef, messages: Sequence[Message]) -> None:
        """Write-through of the full transcript; a no-op on tracks that only keep pairs."""
        ...

    async def rename(self, conversation: ConversationRef, title: str) -> None: ...

    async def archive(self, conversation: ConversationRef, archived: bool = True) -> None: ...

    async def delete(self, conversation: ConversationRef) -> None: ...
