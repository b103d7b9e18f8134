"""Lookup indices over a snapshot of the %contacts agent."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import normalize_identity

CONTACTS_APP = "contacts"
CONTACTS_PATH = "/all"


@dataclass(slots=True, frozen=True)
class ContactDirectory:
    """Contact records keyed by ship plus case-folded reverse indices.

    Colliding nicknames, emails or phones resolve to whichever contact came
    last in the raw mapping's iteration order.
    """

    by_ship: dict[str, dict[str, Any]] = field(default_factory=dict)
    by_nickname: dict[str, str] = field(default_factory=dict)
    by_email: dict[str, str] = field(default_factory=dict)
    by_phone: dict[str, str] = field(default_factory=dict)

    def nickname_for(self, identity: str) -> Optional[str]:
        record = self.by_ship.get(identity)
        if not record:
            return None
        nickname = record.get("nickname")
        return nickname if isinstance(nickname, str) and nickname else None

    def __len__(self) -> int:
        return len(self.by_ship)

    def to_dict(self) -> dict[str, Any]:
        return {
            "byShip": self.by_ship,
            "byNickname": self.by_nickname,
            "byEmail": self.by_email,
            "byPhone": self.by_phone,
        }


def _text_field(record: Mapping[str, Any], name: str) -> Optional[str]:
    value = record.get(name)
    if isinstance(value, str) and value:
        return value
    return None


def build_directory(raw_contacts: Any) -> ContactDirectory:
    """Build a :class:`ContactDirectory` from the raw ``/all`` scry result.

    Null records are left out of every index. Nickname keys are trimmed and
    lowercased. Fields of the wrong type are ignored one by one rather than
    rejecting the record.
    """
    directory = ContactDirectory()
    if not isinstance(raw_contacts, Mapping):
        return directory

    for ship, record in raw_contacts.items():
        if not record or not isinstance(record, Mapping):
            continue
        identity = normalize_identity(str(ship))
        directory.by_ship[identity] = {**record, "ship": identity}

        nickname = _text_field(record, "nickname")
        key = nickname.strip().lower() if nickname else ""
        if key:
            directory.by_nickname[key] = identity
        email = _text_field(record, "email")
        if email:
            directory.by_email[email.lower()] = identity
        phone = _text_field(record, "phone")
        if phone:
            directory.by_phone[phone] = identity

    return directory
