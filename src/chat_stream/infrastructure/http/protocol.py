"""Backend wire models (request body, streamed frames, one-shot reply)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from chat_stream.application.dto.chat_request import OutboundRequest


class HistoryItem(BaseModel):
    role: str
    content: str


class ChatRequestBody(BaseModel):
    """Client → backend."""

    message: str
    conversation_id: str | None
    user_id: str
    timestamp: str
    stream: bool = True
    conversation_history: list[HistoryItem] = []
    files: list[str] = []

    @classmethod
    def from_request(cls, request: OutboundRequest) -> ChatRequestBody:
        return cls(
            message=request.message,
            conversation_id=request.conversation_id,
            user_id=request.user_id,
            timestamp=request.timestamp.isoformat(),
            stream=request.stream,
            conversation_history=[
                HistoryItem(role=entry.role.value, content=entry.content) for entry in request.history
            ],
            files=list(request.files),
        )


class DeltaPayload(BaseModel):
    content: str | None = None


class MessagePayload(BaseModel):
    role: str = "assistant"
    content: str


class Choice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    delta: DeltaPayload | None = None
    message: MessagePayload | None = None


class StreamFrame(BaseModel):
    """Backend → client, one ``data:`` payload."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    choices: list[Choice] = []
    conversation_id: str | None = Field(default=None, alias="conversationId")
    timestamp: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _has_content(self) -> StreamFrame:
        if self.error is None and not self.choices:
            raise ValueError("frame carries neither choices nor error")
        return self


class CompleteReply(BaseModel):
    """Non-streamed backend answer."""

    model_config = ConfigDict(extra="ignore")

    text: str | None = None
    reply: str | None = None
    timestamp: str | None = None

    @property
    def content(self) -> str:
        return self.text if self.text is not None else (self.reply or "")

    @model_validator(mode="after")
    def _has_text(self) -> CompleteReply:
        if self.text is None and self.reply is None:
            raise ValueError("reply carries neither text nor reply")
        return self
