import hmac
import logging
from datetime import timedelta
from typing import Optional

import jwt
from pydantic import ValidationError

from .config import EmployeeAccount, Settings
from .errors import AuthenticationError, CustomerNotFoundError
from .models import Customer, Role, TokenClaims, TokenResponse
from .storage import CustomerStore
from .timestamps import utcnow

log = logging.getLogger(__name__)

ALGORITHM = "HS256"
CUSTOMER_TOKEN_TTL = timedelta(hours=1)
EMPLOYEE_TOKEN_TTL = timedelta(hours=8)


class TokenService:
    def __init__(self, secret: str):
        if not secret:
            raise RuntimeError("JWT secret is not configured")
        self.secret = secret

    def issue(self, claims: dict, ttl: timedelta) -> str:
        now = utcnow()
        return jwt.encode({**claims, "iat": now, "exp": now + ttl}, self.secret, algorithm=ALGORITHM)

    def issue_customer_token(self, customer: Customer) -> str:
        return self.issue({
            "customerId": customer.id,
            "email": customer.email,
            "name": customer.name or "Member",
            "role": Role.CUSTOMER.value,
        }, CUSTOMER_TOKEN_TTL)

    def issue_employee_token(self, employee: EmployeeAccount) -> str:
        return self.issue({
            "employeeId": employee.id,
            "email": employee.email,
            "name": employee.name,
            "role": Role.EMPLOYEE.value,
            "isEmployee": True,
        }, EMPLOYEE_TOKEN_TTL)

    def verify(self, token: str, role: Optional[Role] = None) -> TokenClaims:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as e:
            log.info("Rejected bearer token: %s", e)
            raise AuthenticationError("Invalid or expired token")

        # tokens minted before roles existed carry only customerId
        payload.setdefault("role", Role.EMPLOYEE.value if payload.get("isEmployee") else Role.CUSTOMER.value)
        try:
            claims = TokenClaims(**payload)
        except ValidationError:
            raise AuthenticationError("Invalid or expired token")

        if role == Role.EMPLOYEE and claims.role != Role.EMPLOYEE:
            raise AuthenticationError("Invalid employee token")
        if role == Role.CUSTOMER and not claims.customerId:
            raise AuthenticationError("Invalid customer token")
        return claims


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Unauthorized")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Unauthorized")
    return token


def authenticate_employee(settings: Settings, email: str, password: str) -> EmployeeAccount:
    for employee in settings.employees:
        if employee.email.lower() == email.lower() and hmac.compare_digest(
            employee.password.encode(), password.encode()
        ):
            return employee
    log.warning("Failed employee login for %s", email)
    raise AuthenticationError("Invalid credentials")


def portal_login(store: CustomerStore, tokens: TokenService, email: str) -> TokenResponse:
    customer = store.find_by_email(email)
    if customer is None:
        raise CustomerNotFoundError("No membership found for this email")

    subscriptions = store.list_subscriptions(customer.id, limit=10)
    if not any(s.status == "active" for s in subscriptions):
        raise CustomerNotFoundError("No active membership found")

    return TokenResponse(
        token=tokens.issue_customer_token(customer),
        name=customer.name or "Member",
        email=customer.email or email,
    )


def employee_login(settings: Settings, tokens: TokenService, email: str, password: str) -> TokenResponse:
    employee = authenticate_employee(settings, email, password)
    log.info("Employee %s signed in", employee.id)
    return TokenResponse(
        token=tokens.issue_employee_token(employee),
        name=employee.name,
        email=employee.email,
    )
