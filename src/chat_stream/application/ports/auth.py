from __future__ import annotations

from typing import Protocol

from chat_stream.application.dto.principal import Principal


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Principal:
        """Return the principal for a session token or raise AuthenticationError."""
        ...
