from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationKind(StrEnum):
    DURABLE = "durable"
    GUEST = "guest"
    TRANSIENT = "transient"


class Track(StrEnum):
    EPHEMERAL = "ephemeral"
    DURABLE = "durable"


class AttachmentStatus(StrEnum):
    PENDING = "pending"
    FAILED = "failed"
    ATTACHED = "attached"
    DETACHED = "detached"


class ScrollMode(StrEnum):
    FOLLOWING = "following"
    PINNED_AWAY = "pinned_away"


class InputKind(StrEnum):
    POINTER = "pointer"
    TOUCH = "touch"


class StreamOutcome(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ConversationFilter(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    ALL = "all"
