"""FastAPI dependency injection helpers."""
from __future__ import annotations

import asyncio
import weakref

import redis.asyncio as aioredis
from starlette.requests import HTTPConnection

from chat_stream.application.context import ChatContext
from chat_stream.application.ports.auth import TokenVerifier
from chat_stream.application.ports.clock import SystemClock
from chat_stream.application.ports.kv import KeyValueStore
from chat_stream.application.ports.transport import ChatTransport
from chat_stream.config import settings
from chat_stream.infrastructure.auth.hs256_verifier import HS256Verifier
from chat_stream.infrastructure.auth.jwks_verifier import JWKSVerifier
from chat_stream.infrastructure.db.repositories.conversation import SqlConversationStore
from chat_stream.infrastructure.db.session import get_session_factory
from chat_stream.infrastructure.kv.ephemeral_store import EphemeralConversationStore
from chat_stream.infrastructure.kv.memory import InMemoryKeyValueStore
from chat_stream.infrastructure.kv.redis_store import RedisKeyValueStore


def _get_verifier() -> TokenVerifier:
    if settings.JWT_VERIFY_MODE == "jwks":
        assert settings.JWKS_URL, "JWKS_URL must be set when JWT_VERIFY_MODE=jwks"
        return JWKSVerifier(settings.JWKS_URL, audience=settings.JWT_AUDIENCE)
    return HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)


_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = _get_verifier()
    return _verifier


_memory_kv = InMemoryKeyValueStore()
_guest_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _guest_lock(device_id: str) -> asyncio.Lock:
    """One index lock per device while any of its sessions is open."""
    lock = _guest_locks.get(device_id)
    if lock is None:
        lock = asyncio.Lock()
        _guest_locks[device_id] = lock
    return lock


def get_guest_kv(redis: aioredis.Redis | None) -> KeyValueStore:
    if settings.GUEST_STORAGE == "redis":
        assert redis is not None, "Redis client missing while GUEST_STORAGE=redis"
        return RedisKeyValueStore(redis, ttl_seconds=settings.GUEST_TTL_SECONDS)
    return _memory_kv


def get_transport(conn: HTTPConnection) -> ChatTransport:
    return conn.app.state.backend


async def open_chat_context(
    token: str | None,
    device_id: str,
    *,
    redis: aioredis.Redis | None = None,
) -> ChatContext:
    """Pick the persistence track for a new session.

    A token that fails verification raises AuthenticationError rather than
    silently degrading to a guest session.
    """
    if token:
        principal = await get_verifier().verify(token)
        store = SqlConversationStore(get_session_factory(), principal.subject_id)
        return ChatContext(device_id=device_id, store=store, principal=principal)

    clock = SystemClock()
    store = EphemeralConversationStore(
        get_guest_kv(redis), device_id, now=clock.now, index_lock=_guest_lock(device_id),
    )
    return ChatContext(device_id=device_id, store=store)
