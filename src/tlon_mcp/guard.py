"""Verify a session is usable before any remote call, reconnecting at most once."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from .errors import SessionError, SessionErrorKind, SessionLostError
from .session import Session


class SessionGuard:
    """Serializes liveness checks so one dead session triggers one reconnect.

    A caller that waited on the lock while another reconnected sees the
    refreshed session on its own identity query and takes the fast path.
    """

    def __init__(self, *, logger: Any = None) -> None:
        self._lock = asyncio.Lock()
        self._log = logger or structlog.get_logger("tlon_mcp.guard")

    async def ensure_live(self, session: Session) -> Session:
        async with self._lock:
            original: Optional[BaseException] = None
            if session.live:
                try:
                    await session.whoami()
                except Exception as exc:
                    original = exc
                else:
                    self._log.debug("session.verified", url=session.url)
                    return session
            else:
                original = SessionError(SessionErrorKind.NOT_CONNECTED, "Session is not connected")

            self._log.warning("session.reconnecting", url=session.url, error=str(original))
            try:
                await session.reconnect()
            except Exception as exc:
                self._log.error(
                    "session.lost",
                    url=session.url,
                    error=str(original),
                    reconnect_error=str(exc),
                )
                raise SessionLostError(original, exc) from exc
            self._log.info("session.reconnected", url=session.url)
            return session
