from __future__ import annotations

import jwt

from chat_stream.application.dto.principal import Principal
from chat_stream.application.exceptions import AuthenticationError


class HS256Verifier:
    """Verify session JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as exc:
            raise AuthenticationError(f"Invalid session token: {exc}") from exc
        return principal_from_claims(payload, token)


def principal_from_claims(payload: dict, token: str) -> Principal:
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Session token has no subject")
    return Principal(
        subject_id=str(subject),
        email=payload.get("email"),
        roles=list(payload.get("roles", [])),
        token=token,
    )
