from __future__ import annotations

import asyncio
import logging

import jwt
from jwt import PyJWKClient

from chat_stream.application.dto.principal import Principal
from chat_stream.application.exceptions import AuthenticationError
from chat_stream.infrastructure.auth.hs256_verifier import principal_from_claims

logger = logging.getLogger(__name__)


class JWKSVerifier:
    """Verify session JWTs using a remote JWKS endpoint."""

    def __init__(self, jwks_url: str, *, audience: str | None = None) -> None:
        self._jwks_url = jwks_url
        self._audience = audience
        self._jwk_client = PyJWKClient(jwks_url)

    async def verify(self, token: str) -> Principal:
        try:
            # PyJWKClient fetches keys with blocking urllib
            signing_key = await asyncio.to_thread(self._jwk_client.get_signing_key_from_jwt, token)
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256", "ES256"],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except jwt.PyJWTError as exc:
            logger.debug("JWKS verification failed against %s", self._jwks_url, exc_info=True)
            raise AuthenticationError(f"Invalid session token: {exc}") from exc
        return principal_from_claims(payload, token)
