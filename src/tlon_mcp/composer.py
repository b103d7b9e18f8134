"""Build ``chat-dm-action`` pokes with time-ordered message ids."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from .session import Poke

CHAT_APP: Final[str] = "chat"
DM_ACTION_MARK: Final[str] = "chat-dm-action"

# @da of the unix epoch, and one second in @da units (2^64).
DA_UNIX_EPOCH: Final[int] = 170141184475152167957503069145530368000
DA_SECOND: Final[int] = 1 << 64


def unix_to_da(millis: int) -> int:
    """Convert epoch milliseconds to the ship's absolute date (``@da``) as an integer."""
    return DA_UNIX_EPOCH + (int(millis) * DA_SECOND) // 1000


def format_ud(value: int) -> str:
    """Render ``value`` in ``@ud`` notation: groups of three digits separated by dots."""
    if value < 0:
        raise ValueError("@ud values are unsigned")
    return f"{value:,}".replace(",", ".")


def message_id(author: str, millis: int) -> str:
    return f"{author}/{format_ud(unix_to_da(millis))}"


@dataclass(slots=True, frozen=True)
class MessageAction:
    recipient: str
    id: str
    author: str
    sent: int
    content: tuple[dict[str, Any], ...]

    def to_json(self) -> dict[str, Any]:
        # "kind" and "time" belong to the receiving agent and stay null.
        return {
            "ship": self.recipient,
            "diff": {
                "id": self.id,
                "delta": {
                    "add": {
                        "memo": {
                            "content": [dict(block) for block in self.content],
                            "author": self.author,
                            "sent": self.sent,
                        },
                        "kind": None,
                        "time": None,
                    }
                },
            },
        }

    def to_poke(self) -> Poke:
        return Poke(app=CHAT_APP, mark=DM_ACTION_MARK, json=self.to_json())


def compose_message(author: str, recipient: str, text: str, now: int) -> MessageAction:
    """Compose a single-paragraph DM from ``author`` to ``recipient`` sent at ``now`` (epoch ms).

    Ids from the same author sort in send order; the author prefix keeps ids
    from different authors apart.
    """
    return MessageAction(
        recipient=recipient,
        id=message_id(author, now),
        author=author,
        sent=int(now),
        content=({"inline": [text]},),
    )
