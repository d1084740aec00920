"""aiohttp client for the generation backend."""
from __future__ import annotations

import asyncio
import logging
import random
from typing import AsyncIterator

import aiohttp

from chat_stream.application.dto.chat_request import OutboundRequest
from chat_stream.application.exceptions import AuthenticationError, ExternalServiceError
from chat_stream.config import settings
from chat_stream.infrastructure.http.protocol import ChatRequestBody

logger = logging.getLogger(__name__)

ERROR_BODY_LOG_LIMIT = 500


def _calc_backoff(attempt: int, base: float, cap: float) -> float:
    delay = min(base * (2 ** (attempt - 1)), cap)
    return random.uniform(delay / 2, delay)


class AiohttpReplyChannel:
    """Implements application.ports.transport.ReplyChannel."""

    def __init__(
        self,
        response: aiohttp.ClientResponse,
        first_chunk: bytes,
        *,
        idle_timeout: float,
    ) -> None:
        self._response = response
        self._first_chunk = first_chunk
        self._idle_timeout = idle_timeout
        self._closed = False

    @property
    def is_event_stream(self) -> bool:
        return self._response.content_type == "text/event-stream"

    @property
    def status(self) -> int:
        return self._response.status

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._first_chunk:
            chunk, self._first_chunk = self._first_chunk, b""
            yield chunk
        while not self._closed:
            try:
                async with asyncio.timeout(self._idle_timeout):
                    chunk = await self._response.content.readany()
            except TimeoutError as exc:
                raise ExternalServiceError(
                    f"Backend stream idle for more than {self._idle_timeout:.0f}s",
                ) from exc
            except aiohttp.ClientError as exc:
                raise ExternalServiceError(f"Backend stream interrupted: {exc}") from exc
            if not chunk:
                return
            yield chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()


class BackendClient:
    """Implements application.ports.transport.ChatTransport.

    Retries connection failures, 429 and 5xx answers and a missing first byte
    with exponential backoff. Once the first byte is in, the reply is handed
    over and nothing is retried.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        connect_timeout: float | None = None,
        idle_timeout: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ) -> None:
        self._url = url or settings.backend_chat_url
        self._session = session
        self._owns_session = session is None
        self._connect_timeout = connect_timeout or settings.CONNECT_IDLE_TIMEOUT_SECONDS
        self._idle_timeout = idle_timeout or settings.STREAM_IDLE_TIMEOUT_SECONDS
        self._max_attempts = max(1, max_attempts or settings.CONNECT_MAX_ATTEMPTS)
        self._base_delay = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._max_delay = settings.RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def open(self, request: OutboundRequest, *, auth_token: str | None = None) -> AiohttpReplyChannel:
        body = ChatRequestBody.from_request(request).model_dump(mode="json")
        headers = {"Accept": "text/event-stream, application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        attempt = 1
        while True:
            try:
                channel = await self._attempt(body, headers)
            except ExternalServiceError as exc:
                if not exc.retryable or attempt >= self._max_attempts:
                    logger.warning(
                        "Backend request failed after %d attempt(s): %s", attempt, exc.detail,
                    )
                    raise
                delay = _calc_backoff(attempt, self._base_delay, self._max_delay)
                logger.info(
                    "Backend attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt, self._max_attempts, exc.detail, delay,
                )
                attempt += 1
                await asyncio.sleep(delay)
                continue
            logger.info(
                "Backend reply opened (status=%d, attempt=%d, stream=%s)",
                channel.status, attempt, channel.is_event_stream,
            )
            return channel

    async def _attempt(self, body: dict, headers: dict[str, str]) -> AiohttpReplyChannel:
        session = self._get_session()
        response: aiohttp.ClientResponse | None = None
        try:
            async with asyncio.timeout(self._connect_timeout):
                response = await session.post(self._url, json=body, headers=headers)
                if response.status >= 400:
                    await self._raise_for_status(response)
                first_chunk = await response.content.readany()
        except TimeoutError as exc:
            if response is not None:
                response.close()
            raise ExternalServiceError(
                f"No reply within {self._connect_timeout:.0f}s", retryable=True,
            ) from exc
        except aiohttp.ClientError as exc:
            if response is not None:
                response.close()
            raise ExternalServiceError(f"Backend unreachable: {exc}", retryable=True) from exc
        except BaseException:
            if response is not None:
                response.close()
            raise
        return AiohttpReplyChannel(response, first_chunk, idle_timeout=self._idle_timeout)

    @staticmethod
    async def _raise_for_status(response: aiohttp.ClientResponse) -> None:
        text = await response.text(errors="replace")
        logger.warning(
            "Backend answered %d: %s", response.status, text[:ERROR_BODY_LOG_LIMIT],
        )
        if response.status in (401, 403):
            raise AuthenticationError(f"Backend rejected the session (HTTP {response.status})")
        retryable = response.status == 429 or response.status >= 500
        raise ExternalServiceError(
            f"Backend error (HTTP {response.status})",
            status=response.status,
            retryable=retryable,
        )
