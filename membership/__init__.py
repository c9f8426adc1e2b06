"""
Elite Sleep+ Membership Benefits

This package provides:
- Monthly store credits with reserve → confirm redemption
- Cashback earned on in-store purchases, with a compact history codec
- Three one-time mattress protector replacements per member
- Token login for members and store employees

All benefit state lives in the payment provider's customer metadata.
"""

from .errors import (
    MembershipServiceError,
    CustomerNotFoundError,
    InsufficientCreditsError,
    AmountMismatchError,
    AlreadyClaimedError,
    InactiveSubscriptionError,
    ProviderUnavailableError,
)
from .history import decode_history, encode_history
from .models import (
    CashbackTransaction,
    CreditSummary,
    LedgerState,
    ProtectorStatus,
    TransactionType,
)
from .service import MembershipService
from .storage import CustomerStore, InMemoryCustomerStore, StripeCustomerStore

__all__ = [
    "MembershipServiceError",
    "CustomerNotFoundError",
    "InsufficientCreditsError",
    "AmountMismatchError",
    "AlreadyClaimedError",
    "InactiveSubscriptionError",
    "ProviderUnavailableError",
    "decode_history",
    "encode_history",
    "CashbackTransaction",
    "CreditSummary",
    "LedgerState",
    "ProtectorStatus",
    "TransactionType",
    "MembershipService",
    "CustomerStore",
    "InMemoryCustomerStore",
    "StripeCustomerStore",
]
