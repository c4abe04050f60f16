"""
Subscription status lookups against the Stripe REST API.
https://docs.stripe.com/api/subscriptions/retrieve
"""

from typing import Optional, Protocol

import httpx

from dailyping.config.settings import settings
from dailyping.models.billing_models import BillingLookup
from dailyping.utils.logging import get_logger

logger = get_logger()


class BillingClient(Protocol):
    async def get_subscription_status(self, reference: str) -> BillingLookup:
        ...


class StripeBillingClient:
    """
    Answers ``found(status)``, ``not_found()`` or ``failed(error)``.

    Only a 404 counts as "subscription no longer exists". Every other non-200
    answer, timeout or connection problem is transient.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.BILLING_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def get_subscription_status(self, reference: str) -> BillingLookup:
        if not self.secret_key:
            return BillingLookup.failed("STRIPE_SECRET_KEY not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as http:
                response = await http.get(
                    f"{self.api_base}/subscriptions/{reference}",
                    headers=self._headers(),
                )
        except httpx.TimeoutException:
            return BillingLookup.failed("Request timed out")
        except httpx.RequestError as e:
            return BillingLookup.failed(f"Request failed: {str(e)}")

        if response.status_code == 404:
            return BillingLookup.not_found()
        if response.status_code != 200:
            logger.error(
                f"Stripe subscription lookup failed: {response.status_code} - {response.text}"
            )
            return BillingLookup.failed(f"HTTP {response.status_code}")

        try:
            status = response.json().get("status")
        except ValueError:
            return BillingLookup.failed("Malformed response body")

        if not status:
            return BillingLookup.failed("Response carried no subscription status")
        return BillingLookup.found(str(status))
