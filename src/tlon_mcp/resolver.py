"""Resolve a human-supplied addressee to a canonical ship identity."""

from __future__ import annotations

from typing import Any, Final, Optional

import structlog

from .contacts import ContactDirectory
from .errors import UnresolvedRecipientError
from .utils import has_sigil

SELF_REFERENCES: Final[frozenset[str]] = frozenset({"me", "myself", "i", "self"})


def is_self_reference(name: str) -> bool:
    return name.lower() in SELF_REFERENCES


def needs_directory(name: str) -> bool:
    """Whether resolving ``name`` has to consult the contact directory."""
    text = (name or "").strip()
    return bool(text) and not is_self_reference(text) and not has_sigil(text)


def resolve_address(
    name: str,
    own_identity: str,
    directory: Optional[ContactDirectory],
    *,
    logger: Any = None,
) -> str:
    """Resolve ``name`` to a ship identity.

    Resolution order, first match wins:

    1. ``me``/``myself``/``i``/``self`` (any case) resolve to ``own_identity``.
    2. Input starting with ``~`` is returned verbatim; the ship is the
       authority on whether it exists.
    3. Case-insensitive nickname lookup in ``directory``.

    Anything else raises :class:`UnresolvedRecipientError`. There is no fuzzy
    or partial matching.
    """
    log = logger or structlog.get_logger("tlon_mcp.resolver")
    text = (name or "").strip()
    if not text:
        raise UnresolvedRecipientError(name or "", "Name or ship ID is required")

    if is_self_reference(text):
        log.debug("resolver.self_reference", name=text, ship=own_identity)
        return own_identity

    if has_sigil(text):
        return text

    if directory is None:
        raise UnresolvedRecipientError(text)

    ship = directory.by_nickname.get(text.lower())
    if ship is None:
        log.info(
            "resolver.unresolved",
            name=text,
            known_nicknames=sorted(directory.by_nickname),
        )
        raise UnresolvedRecipientError(text)

    if ship == own_identity:
        log.warning("resolver.nickname_is_self", name=text, ship=ship)
    log.info("resolver.resolved", name=text, ship=ship)
    return ship
