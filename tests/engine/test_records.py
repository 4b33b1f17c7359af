from __future__ import annotations

from datetime import datetime, timezone

import pytest

from member_scraper.engine.records import StoredRow, normalize_record, parse_timestamp
from member_scraper.errors import ValidationError


def test_normalize_record_accepts_aliases_and_trims() -> None:
    record = normalize_record(
        {
            "id": "42",
            "username": "  bob  ",
            "first_name": "Bob",
            "last_name": "",
            "phone": "   ",
            "premium": "yes",
            "last_online": 1_700_000_000_000,
        },
        "@python",
    )
    assert record.entity_id == 42
    assert record.source_group == "@python"
    assert record.handle == "bob"
    assert record.first_name == "Bob"
    assert record.last_name is None
    assert record.contact is None
    assert record.is_premium is True
    assert record.last_seen == 1_700_000_000
    assert record.key == (42, "@python")


def test_normalize_record_defaults_absent_fields() -> None:
    record = normalize_record({"entity_id": 7}, "@g")
    assert record.handle is None
    assert record.is_premium is False
    assert record.last_seen is None


@pytest.mark.parametrize("raw", [{}, {"username": "ghost"}, {"id": True}, {"id": "abc"}, {"id": 1.5}])
def test_normalize_record_rejects_missing_or_invalid_id(raw) -> None:
    with pytest.raises(ValidationError):
        normalize_record(raw, "@g")


def test_normalize_record_rejects_non_mapping() -> None:
    with pytest.raises(ValidationError):
        normalize_record(["id", 1], "@g")  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, 0),
        (1_700_000_000, 1_700_000_000),
        ("1700000000", 1_700_000_000),
        ("2024-01-01T00:00:00Z", 1_704_067_200),
        (-5, None),
        (float("nan"), None),
        ("not a date", None),
        ("", None),
    ],
)
def test_normalize_record_last_seen(value, expected) -> None:
    assert normalize_record({"id": 1, "last_seen": value}, "@g").last_seen == expected


@pytest.mark.parametrize(("value", "expected"), [(1, True), (0, False), ("TRUE", True), ("no", False), (None, False)])
def test_normalize_record_premium_flag(value, expected) -> None:
    assert normalize_record({"id": 1, "is_premium": value}, "@g").is_premium is expected


def test_parse_timestamp_defaults_to_utc() -> None:
    assert parse_timestamp("2024-05-01T10:00:00") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)


def test_stored_row_from_csv_cells() -> None:
    row = StoredRow.from_export(
        {
            "entity_id": "9",
            "handle": "",
            "first_name": "Zoë",
            "last_name": "",
            "contact": "",
            "is_premium": "true",
            "last_seen": "",
            "source_group": "@g",
            "internal_id": "3",
            "scraped_at": "2024-01-01T00:00:00+00:00",
        }
    )
    assert row.entity_id == 9
    assert row.internal_id == 3
    assert row.handle is None
    assert row.first_name == "Zoë"
    assert row.is_premium is True
    assert row.last_seen is None
    assert row.scraped_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("raw_id", [2**63, -(2**63) - 1, 2**70, "99999999999999999999999"])
def test_entity_id_outside_int64_is_rejected(raw_id) -> None:
    with pytest.raises(ValidationError):
        normalize_record({"id": raw_id}, "@g")


def test_entity_id_at_int64_bounds_is_kept() -> None:
    assert normalize_record({"id": 2**63 - 1}, "@g").entity_id == 2**63 - 1
    assert normalize_record({"id": -(2**63)}, "@g").entity_id == -(2**63)


@pytest.mark.parametrize("last_seen", [1e25, 10**30, 10**400, "1e25"])
def test_oversized_last_seen_degrades_to_absent(last_seen) -> None:
    record = normalize_record({"id": 1, "last_seen": last_seen}, "@g")
    assert record.entity_id == 1
    assert record.last_seen is None
