from __future__ import annotations

from typing import AsyncIterator, Protocol

from chat_stream.application.dto.chat_request import OutboundRequest


class ReplyChannel(Protocol):
    """An opened backend reply whose first byte has already arrived."""

    @property
    def is_event_stream(self) -> bool: ...

    def chunks(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


class ChatTransport(Protocol):
    async def open(self, request: OutboundRequest, *, auth_token: str | None = None) -> ReplyChannel:
        """Send the request, retrying only until the reply starts.

        Raises AuthenticationError or ExternalServiceError.
        """
        ...
