"""Typed events produced by the stream decoder."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from chat_stream.domain.value_objects.enums import Role


@dataclass(frozen=True, slots=True)
class DeltaEvent:
    text: str
    conversation_id: str | None = None
    timestamp: str | None = None


@dataclass(frozen=True, slots=True)
class FinalEvent:
    role: Role
    content: str
    conversation_id: str | None = None
    timestamp: str | None = None


@dataclass(frozen=True, slots=True)
class DoneEvent:
    conversation_id: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    conversation_id: str | None = None


StreamEvent: TypeAlias = DeltaEvent | FinalEvent | DoneEvent | ErrorEvent
