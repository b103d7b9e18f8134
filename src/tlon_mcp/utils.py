"""Utility helpers for ship identities, counts and timestamps."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Final, Optional

SIGIL: Final[str] = "~"

MIN_HISTORY_COUNT: Final[int] = 1
MAX_HISTORY_COUNT: Final[int] = 500
DEFAULT_HISTORY_COUNT: Final[int] = 100


def normalize_identity(value: str) -> str:
    """Return ``value`` with exactly one leading sigil.

    Idempotent: ``normalize_identity(normalize_identity(x)) == normalize_identity(x)``.
    Case is preserved.
    """
    return value if value.startswith(SIGIL) else f"{SIGIL}{value}"


def strip_sigil(value: str) -> str:
    return value[1:] if value.startswith(SIGIL) else value


def has_sigil(value: str) -> bool:
    return value.startswith(SIGIL)


def clamp_count(count: Optional[int], *, default: int = DEFAULT_HISTORY_COUNT) -> int:
    """Clamp a requested message count into ``[1, 500]``."""
    if count is None:
        count = default
    return max(MIN_HISTORY_COUNT, min(int(count), MAX_HISTORY_COUNT))


def now_millis() -> int:
    return time.time_ns() // 1_000_000


def iso_from_millis(millis: int | float) -> str:
    """Render epoch milliseconds as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    dt = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
