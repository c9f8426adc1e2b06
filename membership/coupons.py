import logging
from typing import Optional
from urllib.parse import quote

import httpx

from .models import CouponLookup

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class CouponDirectory:
    """Read-only lookup of a customer's discount coupons in the coupon backend."""

    def __init__(self, base_url: Optional[str], timeout: float = DEFAULT_TIMEOUT, client: Optional[httpx.Client] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def find_by_email(self, email: str) -> CouponLookup:
        if not self.is_configured:
            return CouponLookup(success=False, error="Coupon service is not configured")

        url = f"{self.base_url}/api/coupons/search/email/{quote(email, safe='')}"
        try:
            if self.client is not None:
                response = self.client.get(url, timeout=self.timeout)
            else:
                response = httpx.get(url, timeout=self.timeout)
            if response.status_code == 404:
                return CouponLookup(success=True)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("Failed to fetch customer coupons for %s: %s", email, e)
            return CouponLookup(success=False, error="Failed to fetch coupon data")

        coupons = data.get("coupons") or []
        log.info("Found %s coupons for %s", data.get("count", len(coupons)), email)
        return CouponLookup(success=True, count=data.get("count") or len(coupons), coupons=coupons)
