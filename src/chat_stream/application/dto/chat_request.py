from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_stream.domain.value_objects.enums import Role


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    role: Role
    content: str


@dataclass(frozen=True, slots=True)
class OutboundRequest:
    """One generation request as handed to the transport."""

    message: str
    conversation_id: str | None
    user_id: str
    timestamp: datetime
    history: tuple[HistoryEntry, ...] = ()
    files: tuple[str, ...] = ()
    stream: bool = True
