"""Normalize raw DM history scries into a display-ready conversation."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from numbers import Real
from typing import Any, Optional

import structlog

from .contacts import ContactDirectory
from .errors import NormalizationFallback
from .utils import clamp_count, iso_from_millis, normalize_identity

__all__ = [
    "NormalizedMessage",
    "clamp_count",
    "conversation_meta",
    "extract_text",
    "history_path",
    "normalize_history",
]


@dataclass(slots=True, frozen=True)
class NormalizedMessage:
    id: str
    sender: str
    sender_ship: str
    content: str
    sent: str
    timestamp: int | float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "senderShip": self.sender_ship,
            "content": self.content,
            "sent": self.sent,
            "timestamp": self.timestamp,
        }


def history_path(correspondent: str, count: int) -> str:
    return f"/dm/{correspondent}/writs/newest/{clamp_count(count)}/light"


def extract_text(content: Any) -> str:
    """Flatten story blocks to text.

    Only ``inline`` blocks count; their string parts are joined with spaces,
    blocks with newlines, and the result is stripped.
    """
    if not isinstance(content, Sequence) or isinstance(content, (str, bytes)):
        return ""
    lines: list[str] = []
    for block in content:
        inline = block.get("inline") if isinstance(block, Mapping) else None
        if isinstance(inline, Sequence) and not isinstance(inline, (str, bytes)):
            lines.append(" ".join(part for part in inline if isinstance(part, str)))
        else:
            lines.append("")
    return "\n".join(lines).strip()


def _writs(raw_history: Any) -> Mapping[str, Any]:
    if not isinstance(raw_history, Mapping):
        return {}
    # Paged responses wrap the writs next to "newer"/"older" cursors.
    writs = raw_history.get("writs")
    if isinstance(writs, Mapping) and "memo" not in raw_history:
        return writs
    return raw_history


def normalize_history(
    raw_history: Any,
    directory: ContactDirectory,
    own_identity: str,
    *,
    logger: Any = None,
) -> list[NormalizedMessage]:
    """Return the messages of ``raw_history`` newest first.

    Our own messages are always labelled with our raw identity, even when the
    directory holds a nickname for it.
    """
    log = logger or structlog.get_logger("tlon_mcp.history")
    writs = _writs(raw_history)
    log.debug("history.normalize", entries=len(writs), own_ship=own_identity)

    messages: list[NormalizedMessage] = []
    for writ_id, entry in writs.items():
        memo = entry.get("memo") if isinstance(entry, Mapping) else None
        if not isinstance(memo, Mapping):
            continue
        author = memo.get("author")
        if not isinstance(author, str) or not author:
            log.debug("history.skip_invalid_sender", id=writ_id)
            continue
        sender_ship = normalize_identity(author)

        sent = memo.get("sent")
        if isinstance(sent, bool) or not isinstance(sent, Real):
            raise NormalizationFallback(f"Message {writ_id} has a non-numeric timestamp: {sent!r}")

        if sender_ship == own_identity:
            sender_name = own_identity
        else:
            sender_name = directory.nickname_for(sender_ship) or sender_ship

        messages.append(
            NormalizedMessage(
                id=str(writ_id),
                sender=sender_name,
                sender_ship=sender_ship,
                content=extract_text(memo.get("content")),
                sent=iso_from_millis(sent),
                timestamp=sent,
            )
        )

    messages.sort(key=lambda message: message.timestamp, reverse=True)
    return messages


def conversation_meta(
    correspondent: str,
    directory: ContactDirectory,
    messages: Sequence[NormalizedMessage],
) -> dict[str, Optional[Any]]:
    return {
        "correspondent": correspondent,
        "correspondentNickname": directory.nickname_for(correspondent),
        "messageCount": len(messages),
        "startDate": messages[-1].sent if messages else None,
        "endDate": messages[0].sent if messages else None,
    }
