"""
Cashback history codec.

``cashback_history`` is a JSON array stored inside a single metadata value.
Two element shapes exist in live data:

- compact (what every write produces): ``{d, a, c, desc, e, t}``
- full (older writes): ``{id, date, amount, cashback, description, employee, type}``

Reads always return full-shape ``CashbackTransaction`` objects. Compact entries
are upgraded on the fly; the stored value is only rewritten by a new cashback
write, never by a read.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from pydantic import ValidationError

from .models import CashbackTransaction, CompactCashbackEntry, TransactionType
from .timestamps import to_iso, utcnow

log = logging.getLogger(__name__)

COMPACT_MARKER = "d"
STORED_HISTORY_LIMIT = 3
DESCRIPTION_LIMIT = 20
EMPLOYEE_LIMIT = 10


def short_name(name: Optional[str], default: str = "Unknown") -> str:
    words = (name or default).split()
    return (words[0] if words else default)[:EMPLOYEE_LIMIT]


def upgrade_entry(entry: CompactCashbackEntry, index: int) -> CashbackTransaction:
    # time of day is not stored in the compact shape
    return CashbackTransaction(
        id=f"cb_{index}",
        date=f"{entry.d}T00:00:00.000Z",
        amount=entry.a,
        cashback=entry.c,
        description=entry.desc,
        employee=entry.e,
        type=TransactionType.EARNED if entry.t == "e" else TransactionType.USED,
    )


def compact_entry(entry: CashbackTransaction) -> CompactCashbackEntry:
    return CompactCashbackEntry(
        d=entry.date.split("T")[0] if entry.date else utcnow().date().isoformat(),
        a=entry.amount,
        c=entry.cashback,
        desc=(entry.description or "")[:DESCRIPTION_LIMIT],
        e=short_name(entry.employee),
        t="e" if entry.type == TransactionType.EARNED else "u",
    )


def decode_history(raw: Optional[str]) -> list[CashbackTransaction]:
    """Read stored history in either shape. Entries that cannot be read are skipped, the rest are kept."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError as e:
        log.warning("Discarding unreadable cashback history: %s", e)
        return []
    if not isinstance(data, list):
        log.warning("Discarding cashback history that is not a list: %r", raw[:80])
        return []

    entries = []
    for i, item in enumerate(data):
        try:
            if isinstance(item, dict) and COMPACT_MARKER in item:
                entries.append(upgrade_entry(CompactCashbackEntry(**item), i))
            else:
                entries.append(CashbackTransaction(**item))
        except (TypeError, ValidationError) as e:
            log.warning("Skipping unreadable cashback history entry %s: %s", i, e)
    return entries


def encode_history(entries: list[CashbackTransaction]) -> str:
    """Serialize newest-first entries to the compact shape, keeping the most recent few."""
    compact = [compact_entry(e) for e in entries[:STORED_HISTORY_LIMIT]]
    return json.dumps([_compact_to_json(c) for c in compact], separators=(",", ":"))


def _compact_to_json(entry: CompactCashbackEntry) -> dict:
    return {
        "d": entry.d,
        "a": _number(entry.a),
        "c": _number(entry.c),
        "desc": entry.desc,
        "e": entry.e,
        "t": entry.t,
    }


def _number(value):
    # integral amounts stay ints so existing readers see 100 rather than 100.0
    return int(value) if value == value.to_integral_value() else float(value)


def new_transaction(
    amount,
    cashback,
    description: str,
    employee: Optional[str],
    employee_email: Optional[str],
    kind: TransactionType,
    now: Optional[datetime] = None,
) -> CashbackTransaction:
    now = now or utcnow()
    return CashbackTransaction(
        id=f"cb_{int(now.timestamp() * 1000)}",
        date=to_iso(now),
        amount=amount,
        cashback=cashback,
        description=description,
        employee=employee or "Unknown Employee",
        employee_email=employee_email or "",
        type=kind,
    )
