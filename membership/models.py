from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, EmailStr


class TransactionType(str, Enum):
    EARNED = "earned"
    USED = "used"


class ProtectorStatus(str, Enum):
    AVAILABLE = "available"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class Role(str, Enum):
    CUSTOMER = "customer"
    EMPLOYEE = "employee"


class CashbackAction(str, Enum):
    ADD_PURCHASE = "add_purchase"
    USE_CASHBACK = "use_cashback"


class Customer(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    created: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class Invoice(BaseModel):
    id: str
    status: str = "paid"
    subscription: Optional[str] = None


class Subscription(BaseModel):
    id: str
    status: str
    created: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    plan: Optional[str] = None

    def is_live(self) -> bool:
        return self.status in ("active", "trialing", "past_due")


class CompactCashbackEntry(BaseModel):
    d: str
    a: Decimal
    c: Decimal
    desc: str = ""
    e: str = ""
    t: str


class CashbackTransaction(BaseModel):
    id: str
    date: str
    amount: Decimal
    cashback: Decimal
    description: str = ""
    employee: str = ""
    employee_email: str = ""
    type: TransactionType


class InStoreTransaction(BaseModel):
    amount: int
    date: str
    employee: Optional[str] = None
    employeeId: Optional[str] = None
    type: str = "in_store_purchase"


class ProtectorSlot(BaseModel):
    number: int
    used: bool = False
    date: Optional[str] = None
    status: Optional[str] = None
    order_number: Optional[str] = None
    size: Optional[str] = None
    reason: Optional[str] = None
    estimated_delivery: Optional[str] = None
    shipping: Optional[str] = None
    tracking_number: Optional[str] = None

    @property
    def effective_status(self) -> str:
        if self.status:
            return self.status
        return ProtectorStatus.DELIVERED.value if self.used else ProtectorStatus.AVAILABLE.value


class LedgerState(BaseModel):
    credits_used: int = 0
    credits_reserved: int = 0
    reservation_date: Optional[str] = None
    reservation_expires: Optional[str] = None
    cashback_balance: Decimal = Decimal("0")
    cashback_history: list[CashbackTransaction] = Field(default_factory=list)
    last_cashback_update: Optional[str] = None
    last_cashback_employee: Optional[str] = None
    last_transaction: Optional[InStoreTransaction] = None
    protectors: list[ProtectorSlot] = Field(default_factory=list)


class CreditSummary(BaseModel):
    customer_id: str
    total: int
    used: int
    reserved: int
    available: int
    paid_invoices: int
    reservation_date: Optional[str] = None
    reservation_expires: Optional[str] = None
    reservation_expired: bool = False


class ReserveCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Whole credits to hold for an in-store purchase")


class ReserveCreditsResponse(BaseModel):
    success: bool = True
    message: str
    reserved: int
    new_available: int
    reservation_expires: str


class ConfirmCreditRequest(BaseModel):
    customer_email: EmailStr
    credit_amount: int = Field(..., gt=0)


class ConfirmCreditResponse(BaseModel):
    success: bool = True
    message: str
    transaction: InStoreTransaction


class CashbackRequest(BaseModel):
    action: CashbackAction
    customer_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    cashback_used: Optional[Decimal] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "action": "add_purchase",
            "customer_id": "cus_P1abc",
            "amount": 249.99,
            "description": "Pillow set",
        }
    })


class CashbackUpdate(BaseModel):
    customer_id: str
    customer_email: Optional[str] = None
    previous_balance: Decimal
    new_balance: Decimal
    transaction: CashbackTransaction
    total_transactions: int


class CashbackResponse(BaseModel):
    success: bool = True
    message: str
    data: CashbackUpdate


class CashbackHistoryResponse(BaseModel):
    customer_id: str
    customer_email: Optional[str] = None
    cashback_balance: Decimal
    cashback_history: list[CashbackTransaction]
    last_update: Optional[str] = None
    last_employee: Optional[str] = None


class CashbackBalanceResponse(BaseModel):
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    cashback_balance: Decimal = Decimal("0")
    total_earned: Decimal = Decimal("0")
    total_used: Decimal = Decimal("0")
    cashback_history: list[CashbackTransaction] = Field(default_factory=list)
    last_update: Optional[str] = None
    subscription_active: bool = False
    message: Optional[str] = None


class ProtectorView(BaseModel):
    number: int
    used: bool
    date: Optional[str] = None
    status: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


class ProtectorSummary(BaseModel):
    total: int
    used: int
    available: int
    subscription_active: bool = False


class ProtectorStatusResponse(BaseModel):
    protectors: list[ProtectorView]
    summary: ProtectorSummary
    customer_email: Optional[str] = None
    message: str


class ClaimProtectorRequest(BaseModel):
    protector_number: int = Field(..., ge=1, le=3)


class ClaimProtectorResponse(BaseModel):
    success: bool = True
    message: str
    protector_number: int
    claim_date: str
    status: str = ProtectorStatus.PROCESSING.value


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    address1: str = Field(..., min_length=1)
    address2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr
    special_instructions: Optional[str] = None


class ProtectorRequest(BaseModel):
    protector_number: int = Field(..., ge=1, le=3)
    reason: str = Field(..., min_length=1)
    mattress_size: str = Field(..., min_length=1)
    mattress_purchase_date: Optional[str] = None
    shipping_address: ShippingAddress


class ProtectorOrder(BaseModel):
    protector_number: int
    order_number: str
    status: str = ProtectorStatus.PROCESSING.value
    estimated_delivery: str
    shipping_address: ShippingAddress
    mattress_size: str
    request_date: str


class ProtectorRequestResponse(BaseModel):
    success: bool = True
    order_number: str
    message: str
    details: ProtectorOrder
    next_steps: list[str]


class SubscriptionInfo(BaseModel):
    status: str
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    plan: Optional[str] = None


class PortalCustomer(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    created: Optional[datetime] = None


class PortalOverview(BaseModel):
    customer: PortalCustomer
    subscription: SubscriptionInfo
    credits: Optional[CreditSummary] = None
    protectors: ProtectorSummary
    message: Optional[str] = None
    show_reactivate_button: bool = False


class CouponLookup(BaseModel):
    success: bool
    count: int = 0
    coupons: list[dict] = Field(default_factory=list)
    error: Optional[str] = None


class CustomerSearchRequest(BaseModel):
    email: EmailStr


class CustomerSearchResult(BaseModel):
    email: str
    searched_at: datetime
    coupons: CouponLookup
    customer: Optional[PortalCustomer] = None
    credits: Optional[CreditSummary] = None
    protectors: Optional[list[ProtectorView]] = None
    protector_summary: Optional[ProtectorSummary] = None
    cashback_balance: Optional[Decimal] = None
    cashback_history: Optional[list[CashbackTransaction]] = None
    last_transaction: Optional[InStoreTransaction] = None
    provider_error: Optional[str] = None


class PortalLoginRequest(BaseModel):
    email: EmailStr


class EmployeeLoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    success: bool = True
    token: str
    name: str
    email: str


class TokenClaims(BaseModel):
    role: Role
    email: Optional[str] = None
    name: Optional[str] = None
    customerId: Optional[str] = None
    employeeId: Optional[str] = None
    isEmployee: bool = False

    model_config = ConfigDict(extra="ignore")
