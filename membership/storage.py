import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from .errors import ProviderUnavailableError
from .models import Customer, Invoice, Subscription

log = logging.getLogger(__name__)


class CustomerStore(ABC):
    """Customer records owned by the payment provider.

    Metadata writes replace the keys they name; a key written as ``""`` is
    removed. There is no version check, the last write wins.
    """

    @abstractmethod
    def retrieve(self, customer_id: str) -> Optional[Customer]: ...

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[Customer]: ...

    @abstractmethod
    def update_metadata(self, customer_id: str, metadata: dict[str, str]) -> Customer: ...

    @abstractmethod
    def list_paid_invoices(self, customer_id: str, limit: int) -> list[Invoice]: ...

    @abstractmethod
    def list_subscriptions(self, customer_id: str, limit: int = 1) -> list[Subscription]: ...


class InMemoryCustomerStore(CustomerStore):
    def __init__(self):
        self.customers: dict[str, dict] = {}
        self.invoices: dict[str, list[Invoice]] = {}
        self.subscriptions: dict[str, list[Subscription]] = {}

    def add_customer(
        self,
        customer_id: str,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        paid_invoices: int = 0,
        subscription_status: Optional[str] = "active",
    ) -> Customer:
        self.customers[customer_id] = {
            "id": customer_id, "email": email, "name": name,
            "created": datetime.now(timezone.utc),
            "metadata": dict(metadata or {}),
        }
        self.invoices[customer_id] = [
            Invoice(id=f"in_{customer_id}_{i}", subscription=f"sub_{customer_id}")
            for i in range(paid_invoices)
        ]
        self.subscriptions[customer_id] = []
        if subscription_status:
            self.subscriptions[customer_id].append(
                Subscription(id=f"sub_{customer_id}", status=subscription_status)
            )
        return self.retrieve(customer_id)

    def retrieve(self, customer_id: str) -> Optional[Customer]:
        data = self.customers.get(customer_id)
        if not data:
            return None
        return Customer(**{**data, "metadata": dict(data["metadata"])})

    def find_by_email(self, email: str) -> Optional[Customer]:
        for data in self.customers.values():
            if (data["email"] or "").lower() == email.lower():
                return self.retrieve(data["id"])
        return None

    def update_metadata(self, customer_id: str, metadata: dict[str, str]) -> Customer:
        data = self.customers.get(customer_id)
        if not data:
            raise KeyError(customer_id)
        for key, value in metadata.items():
            if value == "":
                data["metadata"].pop(key, None)
            else:
                data["metadata"][key] = value
        return self.retrieve(customer_id)

    def list_paid_invoices(self, customer_id: str, limit: int) -> list[Invoice]:
        paid = [i for i in self.invoices.get(customer_id, []) if i.status == "paid"]
        return paid[:limit]

    def list_subscriptions(self, customer_id: str, limit: int = 1) -> list[Subscription]:
        return self.subscriptions.get(customer_id, [])[:limit]


def _plain(obj: Any) -> dict:
    for name in ("to_dict", "to_dict_recursive"):
        fn = getattr(obj, name, None)
        if callable(fn):
            return fn()
    return dict(obj)


def _invoice_subscription(data: dict) -> Optional[str]:
    # newer API versions moved the subscription under parent.subscription_details
    if data.get("subscription"):
        sub = data["subscription"]
        return sub if isinstance(sub, str) else sub.get("id")
    details = (data.get("parent") or {}).get("subscription_details") or {}
    sub = details.get("subscription")
    if isinstance(sub, dict):
        return sub.get("id")
    return sub


class StripeCustomerStore(CustomerStore):
    def __init__(self, api_key: Optional[str]):
        if not api_key or "placeholder" in api_key:
            raise ProviderUnavailableError("Payment system is not properly configured")
        self.api_key = api_key

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.AuthenticationError as e:
            log.error("Stripe rejected credentials: %s", e)
            raise ProviderUnavailableError("Stripe authentication failed. Please check your API keys.") from e

    def _customer(self, obj: Any) -> Optional[Customer]:
        data = _plain(obj)
        if data.get("deleted"):
            return None
        created = data.get("created")
        return Customer(
            id=data["id"],
            email=data.get("email"),
            name=data.get("name"),
            created=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
        )

    def retrieve(self, customer_id: str) -> Optional[Customer]:
        try:
            return self._customer(self._call(stripe.Customer.retrieve, customer_id))
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise

    def find_by_email(self, email: str) -> Optional[Customer]:
        result = _plain(self._call(stripe.Customer.list, email=email, limit=1))
        customers = result.get("data") or []
        if not customers:
            return None
        return self._customer(customers[0])

    def update_metadata(self, customer_id: str, metadata: dict[str, str]) -> Customer:
        return self._customer(self._call(stripe.Customer.modify, customer_id, metadata=metadata))

    def list_paid_invoices(self, customer_id: str, limit: int) -> list[Invoice]:
        result = _plain(self._call(stripe.Invoice.list, customer=customer_id, status="paid", limit=limit))
        return [
            Invoice(id=inv["id"], status=inv.get("status") or "paid", subscription=_invoice_subscription(inv))
            for inv in result.get("data") or []
        ]

    def list_subscriptions(self, customer_id: str, limit: int = 1) -> list[Subscription]:
        result = _plain(self._call(stripe.Subscription.list, customer=customer_id, status="all", limit=limit))
        subscriptions = []
        for sub in result.get("data") or []:
            items = (sub.get("items") or {}).get("data") or []
            price = (items[0].get("price") or {}) if items else {}
            subscriptions.append(Subscription(
                id=sub["id"],
                status=sub["status"],
                created=sub.get("created"),
                current_period_end=sub.get("current_period_end") or (items[0].get("current_period_end") if items else None),
                cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
                plan=price.get("nickname"),
            ))
        return subscriptions
