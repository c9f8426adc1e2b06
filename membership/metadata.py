"""
Typed view over the provider's customer metadata map.

Every value in the map is a string. ``read_state`` parses the keys this
service owns into a ``LedgerState``; the ``*_patch`` helpers build the string
entries to write back. Nothing outside this module indexes the raw map.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import ValidationError

from .history import decode_history, encode_history, short_name
from .models import CashbackTransaction, InStoreTransaction, LedgerState, ProtectorSlot

log = logging.getLogger(__name__)

PROTECTOR_SLOTS = (1, 2, 3)
PROTECTOR_FIELDS = ("used", "date", "status", "order", "size", "reason", "delivery", "shipping", "tracking")

CREDITS_USED = "credits_used"
CREDITS_RESERVED = "credits_reserved"
RESERVATION_DATE = "reservation_date"
RESERVATION_EXPIRES = "reservation_expires"
CASHBACK_BALANCE = "cashback_balance"
CASHBACK_HISTORY = "cashback_history"
LAST_CASHBACK_UPDATE = "last_cashback_update"
LAST_CASHBACK_EMPLOYEE = "last_cashback_employee"
LAST_TRANSACTION = "last_transaction"
LAST_TRANSACTION_DATE = "last_transaction_date"
LAST_PROCESSED_BY = "last_processed_by"


def protector_key(slot: int, field: str) -> str:
    return f"protector_{slot}_{field}"


def parse_int(value: Optional[str]) -> int:
    """Leading integer of a stored number, ``"12.5"`` reads as 12. Missing, garbage or non-finite reads as 0."""
    return int(parse_decimal(value))


def parse_decimal(value: Optional[str]) -> Decimal:
    if not value:
        return Decimal("0")
    try:
        number = Decimal(value.strip())
    except InvalidOperation:
        log.warning("Unreadable number in metadata: %r", value)
        return Decimal("0")
    # "NaN" and "Infinity" parse but cannot be carried in a balance
    if not number.is_finite():
        log.warning("Non-finite number in metadata: %r", value)
        return Decimal("0")
    return number


def format_decimal(value: Decimal) -> str:
    # "12.5" rather than "12.50", same as the stored JS number strings
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")


def read_protector(metadata: dict[str, str], slot: int) -> ProtectorSlot:
    return ProtectorSlot(
        number=slot,
        used=metadata.get(protector_key(slot, "used")) == "true",
        date=metadata.get(protector_key(slot, "date")) or None,
        status=metadata.get(protector_key(slot, "status")) or None,
        order_number=metadata.get(protector_key(slot, "order")) or None,
        size=metadata.get(protector_key(slot, "size")) or None,
        reason=metadata.get(protector_key(slot, "reason")) or None,
        estimated_delivery=metadata.get(protector_key(slot, "delivery")) or None,
        shipping=metadata.get(protector_key(slot, "shipping")) or None,
        tracking_number=metadata.get(protector_key(slot, "tracking")) or None,
    )


def read_last_transaction(raw: Optional[str]) -> Optional[InStoreTransaction]:
    if not raw:
        return None
    try:
        return InStoreTransaction(**json.loads(raw))
    except (ValueError, TypeError, ValidationError) as e:
        log.warning("Failed to parse last transaction: %s", e)
        return None


def read_state(metadata: Optional[dict[str, str]]) -> LedgerState:
    metadata = metadata or {}
    return LedgerState(
        credits_used=parse_int(metadata.get(CREDITS_USED)),
        credits_reserved=parse_int(metadata.get(CREDITS_RESERVED)),
        reservation_date=metadata.get(RESERVATION_DATE) or None,
        reservation_expires=metadata.get(RESERVATION_EXPIRES) or None,
        cashback_balance=parse_decimal(metadata.get(CASHBACK_BALANCE)),
        cashback_history=decode_history(metadata.get(CASHBACK_HISTORY)),
        last_cashback_update=metadata.get(LAST_CASHBACK_UPDATE) or None,
        last_cashback_employee=metadata.get(LAST_CASHBACK_EMPLOYEE) or None,
        last_transaction=read_last_transaction(metadata.get(LAST_TRANSACTION)),
        protectors=[read_protector(metadata, slot) for slot in PROTECTOR_SLOTS],
    )


def reservation_patch(reserved: int, reserved_at: str, expires_at: str) -> dict[str, str]:
    return {
        CREDITS_RESERVED: str(reserved),
        RESERVATION_DATE: reserved_at,
        RESERVATION_EXPIRES: expires_at,
    }


def confirmation_patch(used: int, transaction: InStoreTransaction, processed_by: Optional[str]) -> dict[str, str]:
    return {
        CREDITS_USED: str(used),
        CREDITS_RESERVED: "0",
        LAST_TRANSACTION: transaction.model_dump_json(),
        LAST_TRANSACTION_DATE: transaction.date,
        LAST_PROCESSED_BY: processed_by or "",
    }


def cashback_patch(
    balance: Decimal,
    history: list[CashbackTransaction],
    updated_on: str,
    employee: Optional[str],
) -> dict[str, str]:
    return {
        CASHBACK_BALANCE: format_decimal(balance),
        CASHBACK_HISTORY: encode_history(history),
        LAST_CASHBACK_UPDATE: updated_on,
        LAST_CASHBACK_EMPLOYEE: short_name(employee),
    }


def protector_patch(slot: int, **fields: Optional[str]) -> dict[str, str]:
    unknown = set(fields) - set(PROTECTOR_FIELDS)
    if unknown:
        raise KeyError(f"Unknown protector fields: {sorted(unknown)}")
    return {protector_key(slot, name): value for name, value in fields.items() if value is not None}


def protector_reset_patch(metadata: dict[str, str]) -> dict[str, str]:
    """Blank every protector key present; the provider drops keys written as empty strings."""
    return {key: "" for key in metadata if key.startswith("protector_")}
