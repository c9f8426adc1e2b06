"""
Unit Tests for the cashback history codec

Tests cover:
1. Upgrading compact entries to the full shape
2. Reading full-shape entries unchanged
3. Silent recovery from unreadable data
4. The compact write format and its size limit
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from membership.history import decode_history, encode_history, new_transaction, short_name
from membership.models import CashbackTransaction, TransactionType


class TestDecodeCompactHistory:
    """Tests for reading the compact storage format."""

    def test_single_compact_entry(self):
        """Test the compact sample decodes to one earned entry at midnight UTC."""
        raw = json.dumps([{"d": "2024-01-01", "a": 100, "c": 10, "desc": "x", "e": "emp1", "t": "e"}])

        entries = decode_history(raw)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.type == TransactionType.EARNED
        assert entry.date == "2024-01-01T00:00:00.000Z"
        assert entry.cashback == Decimal("10")
        assert entry.amount == Decimal("100")
        assert entry.description == "x"
        assert entry.employee == "emp1"
        assert entry.id == "cb_0"

    def test_type_codes(self):
        """Test 'e' maps to earned and every other code maps to used."""
        raw = json.dumps([
            {"d": "2024-03-02", "a": 20, "c": -20, "desc": "used", "e": "Ana", "t": "u"},
            {"d": "2024-03-01", "a": 200, "c": 20, "desc": "bed frame", "e": "Ana", "t": "e"},
            {"d": "2024-02-01", "a": 5, "c": -5, "desc": "odd", "e": "Ana", "t": "z"},
        ])

        entries = decode_history(raw)

        assert [e.type for e in entries] == [
            TransactionType.USED, TransactionType.EARNED, TransactionType.USED,
        ]
        assert [e.id for e in entries] == ["cb_0", "cb_1", "cb_2"]

    def test_decoded_dates_are_full_timestamps(self):
        """Test every upgraded date parses as an aware UTC timestamp."""
        raw = json.dumps([{"d": "2023-12-31", "a": 1, "c": 0.1, "desc": "", "e": "", "t": "e"}])

        entry = decode_history(raw)[0]
        parsed = datetime.fromisoformat(entry.date.replace("Z", "+00:00"))

        assert parsed == datetime(2023, 12, 31, tzinfo=timezone.utc)


class TestDecodeFullHistory:
    """Tests for reading the older full-shape format."""

    def test_full_entries_pass_through(self):
        raw = json.dumps([{
            "id": "cb_1700000000000_abc",
            "date": "2023-11-14T22:13:20.000Z",
            "amount": 80,
            "cashback": 8,
            "description": "Sheets",
            "employee": "Luis Ortega",
            "type": "earned",
        }])

        entries = decode_history(raw)

        assert len(entries) == 1
        assert entries[0].id == "cb_1700000000000_abc"
        assert entries[0].date == "2023-11-14T22:13:20.000Z"
        assert entries[0].employee == "Luis Ortega"


class TestDecodeFailures:
    """Unreadable history or entries are skipped, never raised."""

    @pytest.mark.parametrize("raw", [None, "", "not json", "{\"d\": 1}", "[{\"d\": \"2024-01-01\"}]", "[1, 2]"])
    def test_unreadable_history_is_empty(self, raw):
        assert decode_history(raw) == []

    def test_empty_array(self):
        assert decode_history("[]") == []

    def test_bad_entry_is_skipped(self):
        """Test one unreadable element drops only itself; ids keep their stored position."""
        raw = json.dumps([
            {"d": "2024-05-03", "a": 900, "c": 90, "desc": "Bed", "e": "Ana", "t": "e"},
            {"d": "2024-05-02", "a": None, "c": None, "desc": "Sheets", "e": "Ana", "t": "e"},
            {"d": "2024-05-01", "a": 60, "c": 6, "desc": "Pillow", "e": "Ana", "t": "e"},
        ])

        entries = decode_history(raw)

        assert [e.description for e in entries] == ["Bed", "Pillow"]
        assert [e.id for e in entries] == ["cb_0", "cb_2"]


class TestEncodeHistory:
    """Tests for the compact write format."""

    def test_keeps_three_newest(self):
        """Test only the first three (newest) entries are stored."""
        entries = [
            CashbackTransaction(
                id=f"cb_{i}", date=f"2024-05-0{i + 1}T10:00:00.000Z", amount=Decimal("10"),
                cashback=Decimal("1"), description=f"purchase {i}", employee="Ana", type=TransactionType.EARNED,
            )
            for i in range(5)
        ]

        stored = json.loads(encode_history(entries))

        assert len(stored) == 3
        assert [s["desc"] for s in stored] == ["purchase 0", "purchase 1", "purchase 2"]

    def test_compacts_fields(self):
        """Test dates lose their time, names and descriptions are truncated."""
        entry = CashbackTransaction(
            id="cb_1", date="2024-06-15T18:30:00.000Z", amount=Decimal("249.99"),
            cashback=Decimal("25.00"), description="Adjustable base with massage",
            employee="Maximiliano Rodriguez", type=TransactionType.EARNED,
        )

        stored = json.loads(encode_history([entry]))[0]

        assert stored == {
            "d": "2024-06-15",
            "a": 249.99,
            "c": 25,
            "desc": "Adjustable base with",
            "e": "Maximilian",
            "t": "e",
        }

    def test_encoded_history_decodes_back(self):
        """Test a written history is readable, with the time of day dropped."""
        used = new_transaction(
            Decimal("5"), Decimal("-5"), "Cashback credit used", "Ana Perez", "ana@store.test",
            TransactionType.USED, datetime(2024, 7, 1, 15, 45, tzinfo=timezone.utc),
        )

        decoded = decode_history(encode_history([used]))

        assert decoded[0].type == TransactionType.USED
        assert decoded[0].cashback == Decimal("-5")
        assert decoded[0].date == "2024-07-01T00:00:00.000Z"
        assert decoded[0].employee == "Ana"


class TestNewTransaction:
    def test_id_and_date_from_clock(self):
        now = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)

        tx = new_transaction(Decimal("10"), Decimal("1"), "Pillow", None, None, TransactionType.EARNED, now)

        assert tx.id == f"cb_{int(now.timestamp() * 1000)}"
        assert tx.date == "2024-01-02T03:04:05.678Z"
        assert tx.employee == "Unknown Employee"

    def test_short_name(self):
        assert short_name("Ana Maria Perez") == "Ana"
        assert short_name(None) == "Unknown"
        assert short_name("   ") == "Unknown"
