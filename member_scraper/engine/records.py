"""Member record model and normalisation of raw source payloads."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from ..errors import ValidationError

RawRecord = Mapping[str, Any]

EXPORT_FIELDS: tuple[str, ...] = (
    "entity_id",
    "handle",
    "first_name",
    "last_name",
    "contact",
    "is_premium",
    "last_seen",
    "source_group",
    "internal_id",
    "scraped_at",
)

_ID_KEYS = ("entity_id", "id", "user_id")
_HANDLE_KEYS = ("handle", "username")
_CONTACT_KEYS = ("contact", "phone")
_PREMIUM_KEYS = ("is_premium", "premium")
_LAST_SEEN_KEYS = ("last_seen", "last_online", "was_online")

# SQLite INTEGER range
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TRUE_STRINGS = {"true", "yes", "1", "y"}
_FALSE_STRINGS = {"false", "no", "0", "n", ""}


@dataclass(slots=True, frozen=True)
class MemberRecord:
    """One observation of a member under a source group."""

    entity_id: int
    source_group: str
    handle: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    contact: str | None = None
    is_premium: bool = False
    last_seen: int | None = None

    @property
    def key(self) -> tuple[int, str]:
        return self.entity_id, self.source_group


@dataclass(slots=True, frozen=True)
class StoredRow:
    """A persisted member row as returned by the store."""

    internal_id: int
    entity_id: int
    source_group: str
    scraped_at: datetime
    handle: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    contact: str | None = None
    is_premium: bool = False
    last_seen: int | None = None

    def to_export(self) -> dict[str, Any]:
        """Return an ordered mapping using the export field layout."""

        return {
            "entity_id": self.entity_id,
            "handle": self.handle,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "contact": self.contact,
            "is_premium": self.is_premium,
            "last_seen": self.last_seen,
            "source_group": self.source_group,
            "internal_id": self.internal_id,
            "scraped_at": self.scraped_at.isoformat(),
        }

    @classmethod
    def from_export(cls, data: Mapping[str, Any]) -> "StoredRow":
        """Parse a row produced by ``to_export`` (JSON) or read back from CSV.

        CSV cells arrive as strings, so empty cells map back to ``None`` and
        ``true``/``false`` back to booleans.
        """

        def _text(name: str) -> str | None:
            value = data.get(name)
            if value is None or value == "":
                return None
            return str(value)

        def _int(name: str) -> int | None:
            value = data.get(name)
            if value is None or value == "":
                return None
            return int(value)

        premium = data.get("is_premium")
        if isinstance(premium, str):
            premium = premium.strip().lower() == "true"
        return cls(
            internal_id=int(data["internal_id"]),
            entity_id=int(data["entity_id"]),
            source_group=str(data["source_group"]),
            scraped_at=parse_timestamp(str(data["scraped_at"])),
            handle=_text("handle"),
            first_name=_text("first_name"),
            last_name=_text("last_name"),
            contact=_text("contact"),
            is_premium=bool(premium),
            last_seen=_int("last_seen"),
        )


def parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_record(raw: RawRecord, source_group: str) -> MemberRecord:
    """Turn an untrusted raw payload into a ``MemberRecord``.

    Only the entity identifier is mandatory; every other field degrades to its
    absent representation instead of failing.
    """

    if not isinstance(raw, Mapping):
        raise ValidationError(f"record must be a mapping, got {type(raw).__name__}")
    entity_id = _coerce_entity_id(_first(raw, _ID_KEYS))
    return MemberRecord(
        entity_id=entity_id,
        source_group=source_group,
        handle=_coerce_text(_first(raw, _HANDLE_KEYS)),
        first_name=_coerce_text(raw.get("first_name")),
        last_name=_coerce_text(raw.get("last_name")),
        contact=_coerce_text(_first(raw, _CONTACT_KEYS)),
        is_premium=_coerce_bool(_first(raw, _PREMIUM_KEYS)),
        last_seen=_coerce_epoch(_first(raw, _LAST_SEEN_KEYS)),
    )


def _first(raw: RawRecord, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _coerce_entity_id(value: Any) -> int:
    if value is None:
        raise ValidationError("missing entity identifier")
    entity_id = _parse_entity_id(value)
    if not _INT64_MIN <= entity_id <= _INT64_MAX:
        raise ValidationError(f"entity identifier out of range: {value!r}")
    return entity_id


def _parse_entity_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid entity identifier: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
    raise ValidationError(f"invalid entity identifier: {value!r}")


def _coerce_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return False


def _coerce_epoch(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    numeric: float | None = None
    if isinstance(value, (int, float)):
        try:
            numeric = float(value)
        except OverflowError:
            return None
    elif isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        numeric = moment.timestamp()
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            numeric = float(text)
        except ValueError:
            try:
                numeric = parse_timestamp(text).timestamp()
            except ValueError:
                return None
    if numeric is None or not math.isfinite(numeric):
        return None
    if numeric > 1_000_000_000_000:  # milliseconds
        numeric /= 1000.0
    if numeric < 0 or numeric > _INT64_MAX:
        return None
    return int(numeric)


__all__ = [
    "EXPORT_FIELDS",
    "MemberRecord",
    "RawRecord",
    "StoredRow",
    "normalize_record",
    "parse_timestamp",
]
