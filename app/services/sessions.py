"""TTL cache of portal session tokens."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..errors import HandshakeFailed
from ..models import PortalIdentity
from .normalizer import extract_token
from .portal import canonicalize_endpoint, session_key

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 20 * 60

Handshake = Callable[[str, PortalIdentity], Awaitable[Any]]


@dataclass(slots=True)
class CachedSession:
    token: str
    issued_at: float


class SessionCache:
    """Caches one token per (endpoint, identity) pair.

    Concurrent misses for the same key share a lock, so only the first caller
    performs the handshake and the rest pick up its token.
    """

    def __init__(
        self,
        handshake: Handshake,
        *,
        ttl_seconds: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handshake = handshake
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, CachedSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _fresh(self, key: str) -> str | None:
        cached = self._sessions.get(key)
        if cached is None or not cached.token:
            return None
        if self._clock() - cached.issued_at >= self._ttl:
            return None
        return cached.token

    async def get_token(self, endpoint: str, identity: PortalIdentity) -> str:
        """Return a valid token, performing a handshake when needed."""

        base = canonicalize_endpoint(endpoint)
        key = session_key(base, identity.mac)
        token = self._fresh(key)
        if token:
            return token

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                token = self._fresh(key)
                if token:
                    return token
                payload = await self._handshake(base, identity)
                token = extract_token(payload)
                if not token:
                    raise HandshakeFailed(f"Handshake failed: {payload!r}"[:500])
                logger.info("Handshake succeeded for %s", base)
                self._sessions[key] = CachedSession(token=token, issued_at=self._clock())
                return token
        finally:
            remaining = self._lock_users.pop(key, 1) - 1
            if remaining > 0:
                self._lock_users[key] = remaining
            elif self._locks.get(key) is lock:
                del self._locks[key]

    def evict(self, endpoint: str, identity: PortalIdentity | str) -> None:
        """Drop the session for an endpoint that is no longer current."""

        mac = identity.mac if isinstance(identity, PortalIdentity) else identity
        if self._sessions.pop(session_key(endpoint, mac), None) is not None:
            logger.info("Evicted session for %s", endpoint)

    def clear(self) -> None:
        self._sessions.clear()
        self._locks.clear()
        self._lock_users.clear()
