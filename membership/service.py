import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from .coupons import CouponDirectory
from .errors import (
    AlreadyClaimedError,
    AmountMismatchError,
    CustomerNotFoundError,
    InactiveSubscriptionError,
    InsufficientCashbackError,
    InsufficientCreditsError,
    LedgerValidationError,
)
from .history import STORED_HISTORY_LIMIT, new_transaction
from . import metadata as md
from .models import (
    CashbackAction,
    CashbackBalanceResponse,
    CashbackHistoryResponse,
    CashbackRequest,
    CashbackResponse,
    CashbackUpdate,
    ClaimProtectorResponse,
    ConfirmCreditResponse,
    CreditSummary,
    Customer,
    CustomerSearchResult,
    InStoreTransaction,
    LedgerState,
    PortalCustomer,
    PortalOverview,
    ProtectorOrder,
    ProtectorRequest,
    ProtectorRequestResponse,
    ProtectorStatus,
    ProtectorStatusResponse,
    ProtectorSummary,
    ProtectorView,
    ReserveCreditsResponse,
    SubscriptionInfo,
    TokenClaims,
    TransactionType,
)
from .storage import CustomerStore
from .timestamps import parse_iso, to_iso, utcnow

log = logging.getLogger(__name__)

CREDITS_PER_PAYMENT = 15
INVOICE_FETCH_LIMIT = 100
RESERVATION_HOLD = timedelta(hours=24)
PROTECTOR_DELIVERY_ESTIMATE = timedelta(days=5)
CASHBACK_RATE = Decimal("0.10")
CASHBACK_USE_CAP = Decimal("0.50")
CUSTOMER_HISTORY_LIMIT = 10
CENTS = Decimal("0.01")

PROTECTOR_NEXT_STEPS = [
    "You will receive an email confirmation shortly",
    "Your protector will be shipped within 24-48 hours",
    "Tracking information will be sent to your email",
    "Estimated delivery: 3-5 business days",
]


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class MembershipService:
    """Credits, cashback and protector benefits kept in customer metadata.

    Every mutation reads the customer, computes new values and writes them
    back in one metadata update. Two concurrent writers for the same customer
    are not detected; whichever lands last wins.
    """

    def __init__(
        self,
        store: CustomerStore,
        coupons: Optional[CouponDirectory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.coupons = coupons or CouponDirectory(None)
        self.clock = clock

    # credits

    def get_credit_summary(self, customer_id: str) -> CreditSummary:
        customer = self._get_customer(customer_id)
        return self._credit_summary(customer, md.read_state(customer.metadata))

    def reserve_credits(self, customer_id: str, amount: int) -> ReserveCreditsResponse:
        if amount <= 0:
            raise LedgerValidationError("Invalid amount")

        customer = self._get_customer(customer_id)
        state = md.read_state(customer.metadata)
        summary = self._credit_summary(customer, state)
        if amount > summary.available:
            raise InsufficientCreditsError(amount, summary.available)

        now = self.clock()
        expires = to_iso(now + RESERVATION_HOLD)
        self._write(customer, md.reservation_patch(state.credits_reserved + amount, to_iso(now), expires))
        log.info("Reserved %s credits for %s", amount, customer.id)

        return ReserveCreditsResponse(
            message=f"Successfully reserved ${amount} in credits",
            reserved=amount,
            new_available=summary.available - amount,
            reservation_expires=expires,
        )

    def confirm_credits(self, employee: TokenClaims, customer_email: str, amount: int) -> ConfirmCreditResponse:
        if amount <= 0:
            raise LedgerValidationError("Invalid credit amount")

        customer = self.store.find_by_email(customer_email)
        if customer is None:
            raise CustomerNotFoundError("Customer not found")

        state = md.read_state(customer.metadata)
        if amount != state.credits_reserved:
            raise AmountMismatchError(amount, state.credits_reserved)

        transaction = InStoreTransaction(
            amount=amount,
            date=to_iso(self.clock()),
            employee=employee.name,
            employeeId=employee.employeeId,
        )
        self._write(customer, md.confirmation_patch(state.credits_used + amount, transaction, employee.name))
        log.info("Credit transaction confirmed: customer=%s amount=%s employee=%s", customer.id, amount, employee.name)

        return ConfirmCreditResponse(
            message=f"Successfully confirmed ${amount} credit usage",
            transaction=transaction,
        )

    def _credit_summary(self, customer: Customer, state: LedgerState) -> CreditSummary:
        invoices = self.store.list_paid_invoices(customer.id, INVOICE_FETCH_LIMIT)
        paid = sum(1 for invoice in invoices if invoice.subscription)
        total = paid * CREDITS_PER_PAYMENT
        expires = parse_iso(state.reservation_expires)
        return CreditSummary(
            customer_id=customer.id,
            total=total,
            used=state.credits_used,
            reserved=state.credits_reserved,
            available=total - state.credits_used - state.credits_reserved,
            paid_invoices=paid,
            reservation_date=state.reservation_date,
            reservation_expires=state.reservation_expires,
            reservation_expired=bool(state.credits_reserved and expires and expires <= self.clock()),
        )

    # cashback

    def apply_cashback(self, employee: TokenClaims, request: CashbackRequest) -> CashbackResponse:
        customer = self._get_customer(request.customer_id)
        state = md.read_state(customer.metadata)
        balance = state.cashback_balance
        now = self.clock()

        if request.action == CashbackAction.ADD_PURCHASE:
            if request.amount is None or request.amount <= 0:
                raise LedgerValidationError("Invalid amount")
            if not request.description:
                raise LedgerValidationError("Purchase description is required")
            earned = _cents(request.amount * CASHBACK_RATE)
            new_balance = _cents(balance + earned)
            transaction = new_transaction(
                request.amount, earned, request.description,
                employee.name, employee.email, TransactionType.EARNED, now,
            )
            message = f"Successfully added purchase and earned ${earned} cashback"
        else:
            used = request.cashback_used
            if used is None or used <= 0:
                raise LedgerValidationError("Invalid cashback amount to use")
            if used > balance:
                raise InsufficientCashbackError("Insufficient cashback balance")
            max_allowed = _cents(balance * CASHBACK_USE_CAP)
            if used > max_allowed:
                raise InsufficientCashbackError(
                    f"Cannot use more than 50% of available balance. Maximum allowed: ${max_allowed}"
                )
            new_balance = _cents(balance - used)
            transaction = new_transaction(
                used, -used, request.description or "Cashback credit used",
                employee.name, employee.email, TransactionType.USED, now,
            )
            message = f"Successfully used ${used} cashback"

        history = [transaction] + state.cashback_history
        self._write(customer, md.cashback_patch(new_balance, history, now.date().isoformat(), employee.name))
        log.info("Cashback %s for %s: %s -> %s", request.action.value, customer.id, balance, new_balance)

        return CashbackResponse(
            message=message,
            data=CashbackUpdate(
                customer_id=customer.id,
                customer_email=customer.email,
                previous_balance=balance,
                new_balance=new_balance,
                transaction=transaction,
                total_transactions=min(len(history), STORED_HISTORY_LIMIT),
            ),
        )

    def get_cashback_history(self, customer_id: str) -> CashbackHistoryResponse:
        customer = self._get_customer(customer_id)
        state = md.read_state(customer.metadata)
        return CashbackHistoryResponse(
            customer_id=customer.id,
            customer_email=customer.email,
            cashback_balance=state.cashback_balance,
            cashback_history=state.cashback_history,
            last_update=state.last_cashback_update,
            last_employee=state.last_cashback_employee,
        )

    def get_cashback_balance(self, email: str) -> CashbackBalanceResponse:
        customer = self.store.find_by_email(email)
        if customer is None:
            return CashbackBalanceResponse(customer_email=email, message="No Stripe customer found")

        state = md.read_state(customer.metadata)
        history = state.cashback_history
        return CashbackBalanceResponse(
            customer_id=customer.id,
            customer_email=customer.email,
            cashback_balance=state.cashback_balance,
            total_earned=sum((abs(t.cashback) for t in history if t.type == TransactionType.EARNED), Decimal("0")),
            total_used=sum((abs(t.cashback) for t in history if t.type == TransactionType.USED), Decimal("0")),
            cashback_history=history[:CUSTOMER_HISTORY_LIMIT],
            last_update=state.last_cashback_update,
            subscription_active=self._has_live_subscription(customer.id),
        )

    # protectors

    def get_protector_status(self, customer_id: str) -> ProtectorStatusResponse:
        customer = self._get_customer(customer_id)
        state = md.read_state(customer.metadata)
        active = self._has_live_subscription(customer.id)
        return ProtectorStatusResponse(
            protectors=[self._protector_view(p) for p in state.protectors],
            summary=self._protector_summary(state, active),
            customer_email=customer.email,
            message=(
                "Your mattress protection benefits are active"
                if active else
                "Reactivate your subscription to access protector replacements"
            ),
        )

    def claim_protector(self, customer_id: str, slot: int) -> ClaimProtectorResponse:
        self._check_slot(slot)
        customer = self._get_customer(customer_id)
        self._ensure_unclaimed(customer, slot)

        claim_date = to_iso(self.clock())
        self._write(customer, md.protector_patch(
            slot, used="true", date=claim_date, status=ProtectorStatus.PROCESSING.value,
        ))
        log.info("Protector replacement #%s claimed by customer %s", slot, customer.id)

        return ClaimProtectorResponse(
            message=(
                f"Protector replacement #{slot} has been successfully claimed. "
                "Our team will process your request within 24-48 hours."
            ),
            protector_number=slot,
            claim_date=claim_date,
        )

    def request_protector(self, customer_id: str, request: ProtectorRequest) -> ProtectorRequestResponse:
        slot = request.protector_number
        self._check_slot(slot)
        customer = self._get_customer(customer_id)
        if not self._has_live_subscription(customer.id):
            raise InactiveSubscriptionError(
                "Subscription is not active. Please reactivate your membership to claim protector replacements."
            )
        self._ensure_unclaimed(customer, slot)

        now = self.clock()
        order_number = f"MP-{int(now.timestamp() * 1000)}-{slot}"
        request_date = to_iso(now)
        delivery = to_iso(now + PROTECTOR_DELIVERY_ESTIMATE)
        address = request.shipping_address
        shipping = json.dumps({
            "name": address.full_name,
            "address": f"{address.address1}, {address.city}, {address.state} {address.zip_code}",
            "phone": address.phone,
        })

        self._write(customer, md.protector_patch(
            slot,
            used="true",
            date=request_date,
            status=ProtectorStatus.PROCESSING.value,
            order=order_number,
            size=request.mattress_size,
            reason=request.reason,
            delivery=delivery,
            shipping=shipping,
        ))
        log.info("Protector request processed: order=%s customer=%s slot=%s size=%s",
                 order_number, customer.id, slot, request.mattress_size)

        return ProtectorRequestResponse(
            order_number=order_number,
            message="Your mattress protector replacement request has been successfully submitted.",
            details=ProtectorOrder(
                protector_number=slot,
                order_number=order_number,
                estimated_delivery=delivery,
                shipping_address=address,
                mattress_size=request.mattress_size,
                request_date=request_date,
            ),
            next_steps=PROTECTOR_NEXT_STEPS,
        )

    def reset_protectors(self, customer_id: str) -> Customer:
        customer = self._get_customer(customer_id)
        patch = md.protector_reset_patch(customer.metadata)
        if not patch:
            return customer
        log.info("Clearing %s protector keys for %s", len(patch), customer.id)
        return self.store.update_metadata(customer.id, patch)

    # overviews

    def get_portal_overview(self, customer_id: str, display_name: Optional[str] = None) -> PortalOverview:
        customer = self._get_customer(customer_id)
        profile = PortalCustomer(
            id=customer.id,
            name=display_name or customer.name or "Member",
            email=customer.email,
            created=customer.created,
        )
        subscriptions = [s for s in self.store.list_subscriptions(customer.id) if s.is_live()]
        if not subscriptions:
            return PortalOverview(
                customer=profile,
                subscription=SubscriptionInfo(status="inactive"),
                protectors=ProtectorSummary(total=0, used=0, available=0),
                message="No active subscription. Visit the pricing page to subscribe.",
                show_reactivate_button=True,
            )

        subscription = subscriptions[0]
        state = md.read_state(customer.metadata)
        return PortalOverview(
            customer=profile,
            subscription=SubscriptionInfo(
                status=subscription.status,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
                plan=subscription.plan or "Premium",
            ),
            credits=self._credit_summary(customer, state),
            protectors=self._protector_summary(state, True),
        )

    def search_customer(self, email: str) -> CustomerSearchResult:
        customer = self.store.find_by_email(email)
        coupons = self.coupons.find_by_email(email)

        if customer is None and not (coupons.success and coupons.count > 0):
            raise CustomerNotFoundError("No customer data found")

        result = CustomerSearchResult(email=email, searched_at=self.clock(), coupons=coupons)
        if customer is None:
            result.provider_error = "Customer not found in Stripe"
            return result

        state = md.read_state(customer.metadata)
        result.customer = PortalCustomer(
            id=customer.id, name=customer.name or "Customer", email=customer.email, created=customer.created,
        )
        result.credits = self._credit_summary(customer, state)
        result.protectors = [self._protector_view(p) for p in state.protectors]
        result.protector_summary = self._protector_summary(state, self._has_live_subscription(customer.id))
        result.cashback_balance = state.cashback_balance
        result.cashback_history = state.cashback_history
        result.last_transaction = state.last_transaction
        return result

    # helpers

    def _get_customer(self, customer_id: str) -> Customer:
        customer = self.store.retrieve(customer_id)
        if customer is None:
            raise CustomerNotFoundError("Customer not found")
        return customer

    def _write(self, customer: Customer, patch: dict[str, str]) -> Customer:
        # whole-map write: the provider sees the full metadata as read plus our changes
        return self.store.update_metadata(customer.id, {**customer.metadata, **patch})

    def _has_live_subscription(self, customer_id: str) -> bool:
        subscriptions = self.store.list_subscriptions(customer_id, limit=1)
        return bool(subscriptions) and subscriptions[0].is_live()

    def _check_slot(self, slot: int) -> None:
        if slot not in md.PROTECTOR_SLOTS:
            raise LedgerValidationError("Invalid protector number")

    def _ensure_unclaimed(self, customer: Customer, slot: int) -> None:
        if md.read_protector(customer.metadata, slot).used:
            raise AlreadyClaimedError(slot)

    @staticmethod
    def _protector_view(slot) -> ProtectorView:
        return ProtectorView(
            number=slot.number,
            used=slot.used,
            date=slot.date,
            status=slot.effective_status,
            tracking_number=slot.tracking_number,
            estimated_delivery=slot.estimated_delivery,
        )

    @staticmethod
    def _protector_summary(state: LedgerState, subscription_active: bool) -> ProtectorSummary:
        used = sum(1 for p in state.protectors if p.used)
        return ProtectorSummary(
            total=len(state.protectors),
            used=used,
            available=len(state.protectors) - used,
            subscription_active=subscription_active,
        )
