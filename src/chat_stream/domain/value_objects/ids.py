"""Conversation identifiers.

The id space has three namespaces. The namespace is carried as a tag on
``ConversationRef`` and never re-derived from the string value inside the
engine; the ``guest-`` / ``temp-`` prefixes only exist on the string form
used for navigation and key-value storage.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from uuid import UUID

from chat_stream.domain.value_objects.enums import ConversationKind

_PREFIXES: dict[ConversationKind, str] = {
    ConversationKind.GUEST: "guest-",
    ConversationKind.TRANSIENT: "temp-",
}


@dataclass(frozen=True, slots=True)
class ConversationRef:
    kind: ConversationKind
    value: str

    @classmethod
    def durable(cls, conversation_id: UUID | str) -> ConversationRef:
        return cls(ConversationKind.DURABLE, str(UUID(str(conversation_id))))

    @classmethod
    def guest(cls) -> ConversationRef:
        return cls(ConversationKind.GUEST, uuid.uuid4().hex)

    @classmethod
    def transient(cls) -> ConversationRef:
        return cls(ConversationKind.TRANSIENT, uuid.uuid4().hex)

    @classmethod
    def parse(cls, raw: str) -> ConversationRef:
        """Parse the navigation/storage string form back into a tagged ref."""
        for kind, prefix in _PREFIXES.items():
            if raw.startswith(prefix) and len(raw) > len(prefix):
                return cls(kind, raw[len(prefix):])
        try:
            return cls.durable(raw)
        except ValueError:
            raise ValueError(f"Not a conversation id: {raw!r}") from None

    @property
    def is_durable(self) -> bool:
        return self.kind == ConversationKind.DURABLE

    @property
    def is_guest(self) -> bool:
        return self.kind == ConversationKind.GUEST

    @property
    def is_transient(self) -> bool:
        return self.kind == ConversationKind.TRANSIENT

    def as_uuid(self) -> UUID:
        if not self.is_durable:
            raise ValueError(f"{self} is not a server-issued id")
        return UUID(self.value)

    def __str__(self) -> str:
        return _PREFIXES.get(self.kind, "") + self.value
