"""Exceptions raised by the membership services."""


class MembershipServiceError(Exception):
    pass


class LedgerValidationError(MembershipServiceError):
    """Request passed schema checks but is out of range for the ledger."""


class CustomerNotFoundError(MembershipServiceError):
    pass


class InsufficientCreditsError(MembershipServiceError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Insufficient credits. Available: ${available}")
        self.requested = requested
        self.available = available


class AmountMismatchError(MembershipServiceError):
    def __init__(self, requested: int, reserved: int) -> None:
        super().__init__("Amount does not match reserved credits")
        self.requested = requested
        self.reserved = reserved


class AlreadyClaimedError(MembershipServiceError):
    def __init__(self, slot: int) -> None:
        super().__init__(f"Protector replacement #{slot} has already been claimed")
        self.slot = slot


class InactiveSubscriptionError(MembershipServiceError):
    pass


class InsufficientCashbackError(MembershipServiceError):
    pass


class ProviderUnavailableError(MembershipServiceError):
    """Payment provider is not configured or rejected our credentials."""


class AuthenticationError(MembershipServiceError):
    pass
