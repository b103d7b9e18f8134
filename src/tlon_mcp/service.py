"""DM orchestration: the only layer that knows about tool parameters and responses."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, Final, Optional

import structlog

from .composer import CHAT_APP, compose_message
from .contacts import CONTACTS_APP, CONTACTS_PATH, ContactDirectory, build_directory
from .errors import (
    InvalidArgumentError,
    NormalizationFallback,
    RemoteActionError,
    RemoteErrorKind,
    TlonMcpError,
)
from .guard import SessionGuard
from .history import conversation_meta, history_path, normalize_history
from .resolver import needs_directory, resolve_address
from .session import Scry, Session
from .utils import DEFAULT_HISTORY_COUNT, clamp_count, normalize_identity, now_millis

ToolResponse = dict[str, list[dict[str, str]]]

FORMATS: Final[frozenset[str]] = frozenset({"raw", "formatted"})


def text_response(text: str) -> ToolResponse:
    return {"content": [{"type": "text", "text": text}]}


def error_response(message: str) -> ToolResponse:
    return text_response(f"Error: {message or 'Unknown error occurred'}")


def response_text(response: ToolResponse) -> str:
    return response["content"][0]["text"]


def is_error_response(response: ToolResponse) -> bool:
    return response_text(response).startswith("Error:")


def _check_format(value: str) -> str:
    if value not in FORMATS:
        raise InvalidArgumentError(f"format must be one of {sorted(FORMATS)}, got {value!r}")
    return value


class DmService:
    def __init__(
        self,
        session: Session,
        own_identity: str,
        *,
        guard: Optional[SessionGuard] = None,
        clock: Callable[[], int] = now_millis,
        default_count: int = DEFAULT_HISTORY_COUNT,
        logger: Any = None,
    ) -> None:
        self.session = session
        self.own_identity = normalize_identity(own_identity)
        self.guard = guard or SessionGuard(logger=logger)
        self._clock = clock
        self._default_count = default_count
        self._log = logger or structlog.get_logger("tlon_mcp.service")

    # -- remote helpers -------------------------------------------------------------------------

    async def _ensure_live(self) -> Session:
        return await self.guard.ensure_live(self.session)

    async def _fetch_contacts(self) -> Any:
        return await self.session.query(Scry(app=CONTACTS_APP, path=CONTACTS_PATH))

    async def _load_directory(self) -> ContactDirectory:
        await self._ensure_live()
        raw = await self._fetch_contacts()
        directory = build_directory(raw)
        self._log.debug("contacts.loaded", contacts=len(directory), nicknames=len(directory.by_nickname))
        return directory

    async def resolve(self, name: str) -> str:
        directory = await self._load_directory() if needs_directory(name) else None
        return resolve_address(name, self.own_identity, directory, logger=self._log)

    def _failure(self, operation: str, exc: BaseException) -> ToolResponse:
        if isinstance(exc, TlonMcpError):
            self._log.warning(
                f"{operation}.failed",
                error_type=exc.error_type,
                error=str(exc),
                **exc.data,
            )
        else:
            self._log.exception(f"{operation}.unexpected_error", error=str(exc))
        return error_response(str(exc))

    # -- operations ---------------------------------------------------------------------------

    async def send_message(self, raw_recipient: str, text: str) -> ToolResponse:
        self._log.info("send_dm.start", recipient=raw_recipient)
        recipient: Optional[str] = None
        try:
            recipient = await self.resolve(raw_recipient)
            await self._ensure_live()
            action = compose_message(self.own_identity, recipient, text, self._clock())
            await self.session.invoke(action.to_poke())
        except RemoteActionError as exc:
            if exc.kind is RemoteErrorKind.CHANNEL_REJECTED:
                self._failure("send_dm", exc)
                return error_response(self._channel_hint(recipient or raw_recipient))
            return self._failure("send_dm", exc)
        except Exception as exc:
            return self._failure("send_dm", exc)
        self._log.info("send_dm.sent", recipient=recipient, id=action.id)
        return text_response(f"Message sent to {recipient}")

    def _channel_hint(self, recipient: str) -> str:
        return (
            "Failed to communicate with the ship. Please verify:\n"
            f"1. Your ship is still running at {self.session.url}\n"
            "2. You have the 'chat' app installed and running\n"
            f"3. The recipient ({recipient}) is valid and can receive DMs\n"
            "4. Try restarting the server if the issue persists"
        )

    async def read_history(
        self,
        raw_correspondent: str,
        count: Optional[int] = None,
        format: str = "formatted",
    ) -> ToolResponse:
        self._log.info("read_history.start", correspondent=raw_correspondent, count=count, format=format)
        try:
            _check_format(format)
            correspondent = await self.resolve(raw_correspondent)
            await self._ensure_live()
            capped = clamp_count(count, default=self._default_count)
            raw_history = await self.session.query(Scry(app=CHAT_APP, path=history_path(correspondent, capped)))
        except Exception as exc:
            return self._failure("read_history", exc)

        raw_response = text_response(json.dumps(raw_history, separators=(",", ":"), ensure_ascii=False))
        if format == "raw":
            return raw_response

        try:
            directory = build_directory(await self._fetch_contacts())
            messages = normalize_history(raw_history, directory, self.own_identity, logger=self._log)
            payload = {
                "meta": conversation_meta(correspondent, directory, messages),
                "messages": [message.to_dict() for message in messages],
            }
            return text_response(json.dumps(payload, indent=2, ensure_ascii=False))
        except Exception as exc:
            fallback = exc if isinstance(exc, NormalizationFallback) else NormalizationFallback(str(exc))
            self._log.warning(
                "history.normalization_fallback",
                correspondent=correspondent,
                error=str(fallback),
                cause=type(exc).__name__,
            )
            return raw_response

    async def list_contacts(self, format: str = "formatted") -> ToolResponse:
        try:
            _check_format(format)
            await self._ensure_live()
            raw_contacts = await self._fetch_contacts()
        except Exception as exc:
            return self._failure("list_contacts", exc)
        data = raw_contacts if format == "raw" else build_directory(raw_contacts).to_dict()
        return text_response(json.dumps(data, indent=2, ensure_ascii=False))

    async def close(self) -> None:
        close = getattr(self.session, "close", None)
        if close is not None:
            await close()
