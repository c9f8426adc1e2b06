import logging
import os
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import TokenService, bearer_token, employee_login, portal_login
from .config import Settings
from .coupons import CouponDirectory
from .errors import (
    AlreadyClaimedError,
    AmountMismatchError,
    AuthenticationError,
    CustomerNotFoundError,
    InactiveSubscriptionError,
    InsufficientCashbackError,
    InsufficientCreditsError,
    LedgerValidationError,
    ProviderUnavailableError,
)
from .models import (
    CashbackBalanceResponse,
    CashbackHistoryResponse,
    CashbackRequest,
    CashbackResponse,
    ClaimProtectorRequest,
    ClaimProtectorResponse,
    ConfirmCreditRequest,
    ConfirmCreditResponse,
    CreditSummary,
    CustomerSearchRequest,
    CustomerSearchResult,
    EmployeeLoginRequest,
    PortalLoginRequest,
    PortalOverview,
    ProtectorRequest,
    ProtectorRequestResponse,
    ProtectorStatusResponse,
    ReserveCreditsRequest,
    ReserveCreditsResponse,
    Role,
    TokenClaims,
    TokenResponse,
)
from .service import MembershipService
from .storage import CustomerStore, StripeCustomerStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger(__name__)

LEDGER_REJECTIONS = (
    LedgerValidationError,
    InsufficientCreditsError,
    AmountMismatchError,
    AlreadyClaimedError,
    InactiveSubscriptionError,
    InsufficientCashbackError,
)

app = FastAPI(
    title="Elite Sleep+ Membership API",
    description="Member credits, cashback and mattress protector benefits kept on payment provider customer records",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def get_store(settings: Settings = Depends(get_settings)) -> CustomerStore:
    return StripeCustomerStore(settings.stripe_secret_key)


def get_service(
    store: CustomerStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> MembershipService:
    return MembershipService(store, CouponDirectory(settings.coupon_api_url))


def get_tokens(settings: Settings = Depends(get_settings)) -> TokenService:
    return TokenService(settings.jwt_secret)


def current_customer(
    authorization: Optional[str] = Header(default=None),
    tokens: TokenService = Depends(get_tokens),
) -> TokenClaims:
    return tokens.verify(bearer_token(authorization), Role.CUSTOMER)


def current_member(
    authorization: Optional[str] = Header(default=None),
    tokens: TokenService = Depends(get_tokens),
) -> TokenClaims:
    return tokens.verify(bearer_token(authorization))


def current_employee(
    authorization: Optional[str] = Header(default=None),
    tokens: TokenService = Depends(get_tokens),
) -> TokenClaims:
    return tokens.verify(bearer_token(authorization), Role.EMPLOYEE)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": str(exc)})


@app.exception_handler(ProviderUnavailableError)
async def provider_error_handler(request: Request, exc: ProviderUnavailableError) -> JSONResponse:
    log.warning("Payment provider unavailable: %s", exc)
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "membership-benefits"}


@app.post("/portal/login", response_model=TokenResponse, tags=["Auth"])
def login_member(
    request: PortalLoginRequest,
    store: CustomerStore = Depends(get_store),
    tokens: TokenService = Depends(get_tokens),
) -> TokenResponse:
    try:
        return portal_login(store, tokens, request.email)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/employee/login", response_model=TokenResponse, tags=["Auth"])
def login_employee(
    request: EmployeeLoginRequest,
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_tokens),
) -> TokenResponse:
    return employee_login(settings, tokens, request.email, request.password)


@app.get("/portal/data", response_model=PortalOverview, tags=["Portal"])
def portal_data(
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> PortalOverview:
    try:
        return service.get_portal_overview(claims.customerId, claims.name)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.get("/credits", response_model=CreditSummary, tags=["Credits"])
def credit_summary(
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> CreditSummary:
    try:
        return service.get_credit_summary(claims.customerId)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/credits/reserve", response_model=ReserveCreditsResponse, tags=["Credits"])
def reserve_credits(
    request: ReserveCreditsRequest,
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> ReserveCreditsResponse:
    try:
        return service.reserve_credits(claims.customerId, request.amount)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LEDGER_REJECTIONS as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/employee/confirm-credit", response_model=ConfirmCreditResponse, tags=["Employee"])
def confirm_credit(
    request: ConfirmCreditRequest,
    employee: TokenClaims = Depends(current_employee),
    service: MembershipService = Depends(get_service),
) -> ConfirmCreditResponse:
    try:
        return service.confirm_credits(employee, request.customer_email, request.credit_amount)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LEDGER_REJECTIONS as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/employee/customer-search", response_model=CustomerSearchResult, tags=["Employee"])
def customer_search(
    request: CustomerSearchRequest,
    employee: TokenClaims = Depends(current_employee),
    service: MembershipService = Depends(get_service),
) -> CustomerSearchResult:
    try:
        return service.search_customer(request.email)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/employee/cashback", response_model=CashbackResponse, tags=["Employee"])
def apply_cashback(
    request: CashbackRequest,
    employee: TokenClaims = Depends(current_employee),
    service: MembershipService = Depends(get_service),
) -> CashbackResponse:
    try:
        return service.apply_cashback(employee, request)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LEDGER_REJECTIONS as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/employee/cashback", response_model=CashbackHistoryResponse, tags=["Employee"])
def cashback_history(
    customer_id: str,
    employee: TokenClaims = Depends(current_employee),
    service: MembershipService = Depends(get_service),
) -> CashbackHistoryResponse:
    try:
        return service.get_cashback_history(customer_id)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.get("/cashback/balance", response_model=CashbackBalanceResponse, tags=["Cashback"])
def cashback_balance(
    claims: TokenClaims = Depends(current_member),
    service: MembershipService = Depends(get_service),
) -> CashbackBalanceResponse:
    if not claims.email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email not found in token")
    return service.get_cashback_balance(claims.email)


@app.get("/protector/status", response_model=ProtectorStatusResponse, tags=["Protectors"])
def protector_status(
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> ProtectorStatusResponse:
    try:
        return service.get_protector_status(claims.customerId)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/protector/claim", response_model=ClaimProtectorResponse, tags=["Protectors"])
def claim_protector(
    request: ClaimProtectorRequest,
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> ClaimProtectorResponse:
    try:
        return service.claim_protector(claims.customerId, request.protector_number)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LEDGER_REJECTIONS as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/protector/request", response_model=ProtectorRequestResponse, tags=["Protectors"])
def request_protector(
    request: ProtectorRequest,
    claims: TokenClaims = Depends(current_customer),
    service: MembershipService = Depends(get_service),
) -> ProtectorRequestResponse:
    try:
        return service.request_protector(claims.customerId, request)
    except CustomerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except LEDGER_REJECTIONS as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
