from __future__ import annotations

import time
from abc import ABC, abstractmethod

from auth.models import TokenRecord


class TokenStore(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> TokenRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, session_id: str, record: TokenRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    """Process-local token records, one per browser session.

    Nothing is persisted: a restart drops every record. With ``ttl_seconds``
    set, a record not read or written for that long is evicted, matching the
    lifetime of the session cookie that carries its id.
    """

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._tokens: dict[str, TokenRecord] = {}
        self._touched_at: dict[str, float] = {}

    async def get(self, session_id: str) -> TokenRecord | None:
        self._cleanup_expired()
        record = self._tokens.get(session_id)
        if record is not None:
            self._touched_at[session_id] = time.time()
        return record

    async def set(self, session_id: str, record: TokenRecord) -> None:
        self._cleanup_expired()
        self._tokens[session_id] = record
        self._touched_at[session_id] = time.time()

    async def delete(self, session_id: str) -> None:
        self._tokens.pop(session_id, None)
        self._touched_at.pop(session_id, None)

    def _cleanup_expired(self) -> None:
        if self.ttl_seconds is None:
            return
        cutoff = time.time() - self.ttl_seconds
        expired = [
            session_id
            for session_id, touched_at in self._touched_at.items()
            if touched_at < cutoff
        ]
        for session_id in expired:
            del self._tokens[session_id]
            del self._touched_at[session_id]
