import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

MAX_EMPLOYEES = 9


@dataclass
class EmployeeAccount:
    id: str
    email: str
    password: str
    name: str


@dataclass
class Settings:
    stripe_secret_key: Optional[str] = None
    jwt_secret: str = ""
    coupon_api_url: Optional[str] = None
    log_level: str = "INFO"
    employees: list[EmployeeAccount] = field(default_factory=list)

    @classmethod
    def from_env(cls, load_files: bool = True) -> "Settings":
        if load_files:
            load_dotenv(".env.local")
            load_dotenv()
        return cls(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            jwt_secret=os.getenv("JWT_SECRET", ""),
            coupon_api_url=os.getenv("COUPON_API_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            employees=load_employees(),
        )


def load_employees() -> list[EmployeeAccount]:
    """Store staff accounts come from ``EMPLOYEE_<n>_EMAIL/PASSWORD/NAME``; incomplete entries are skipped."""
    employees = []
    for i in range(1, MAX_EMPLOYEES + 1):
        email = os.getenv(f"EMPLOYEE_{i}_EMAIL")
        password = os.getenv(f"EMPLOYEE_{i}_PASSWORD")
        name = os.getenv(f"EMPLOYEE_{i}_NAME")
        if email and password and name:
            employees.append(EmployeeAccount(id=f"emp_{i}", email=email, password=password, name=name))
    return employees
