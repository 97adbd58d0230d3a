"""Dodo Payments checkout sessions for portal invoice payments"""

import logging
from dataclasses import dataclass
from typing import Optional

from dodopayments import AsyncDodoPayments  # type: ignore

from ...config import (
    DODO_ADHOC_PRODUCT_ID,
    DODO_PAYMENTS_API_KEY,
    DODO_PAYMENTS_ENVIRONMENT,
    PAYMENT_CURRENCY,
)

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """Raised when the payment processor is unavailable or rejects a request"""

    pass


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


def normalize_dodo_environment(env: Optional[str]) -> str:
    """Normalize Dodo environment value to expected format"""
    value = (env or "test_mode").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live_mode"
    if value in {"test", "sandbox", "staging", "dev", "development"}:
        return "test_mode"
    if value in {"test_mode", "live_mode"}:
        return value
    logger.warning(f"Unknown DODO environment '{env}', defaulting to test_mode")
    return "test_mode"


def _read(obj, name: str):
    # SDK responses are models; tests and older SDKs hand back dicts
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(name)
    return value


class DodoCheckoutService:
    """Creates pay-what-you-want checkout sessions for invoice balances"""

    def __init__(
        self,
        api_key: Optional[str] = DODO_PAYMENTS_API_KEY,
        environment: Optional[str] = DODO_PAYMENTS_ENVIRONMENT,
        product_id: Optional[str] = DODO_ADHOC_PRODUCT_ID,
        currency: str = PAYMENT_CURRENCY,
        client=None,
    ):
        self.environment = normalize_dodo_environment(environment)
        self.product_id = product_id
        self.currency = currency
        self.client = client

        if self.client is None and api_key:
            try:
                self.client = AsyncDodoPayments(bearer_token=api_key, environment=self.environment)
                logger.info(f"Dodo Payments client initialized (env={self.environment})")
            except Exception as e:
                logger.error(f"Failed to initialize Dodo client (env={self.environment}): {e}")
                self.client = None
        elif self.client is None:
            logger.warning("DODO_PAYMENTS_API_KEY not set; portal payments are disabled")

    def is_available(self) -> bool:
        """Check if a client and a product to charge against are configured"""
        return self.client is not None and bool(self.product_id)

    async def create_checkout_session(
        self,
        amount: float,
        customer_email: Optional[str],
        customer_name: Optional[str],
        return_url: str,
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        """Create a checkout session charging amount (major units) once"""
        if not self.is_available():
            raise PaymentProviderError("Payment processing is not configured")

        session_data = {
            "product_cart": [
                {
                    "product_id": self.product_id,
                    "quantity": 1,
                    # Dynamic amount in lowest currency unit (cents)
                    "amount": int(round(amount * 100)),
                }
            ],
            "customer": {"email": customer_email or "", "name": customer_name or ""},
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
            "return_url": return_url,
        }

        try:
            response = await self.client.checkout_sessions.create(**session_data)
        except Exception as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise PaymentProviderError(f"Failed to create payment session: {e}") from e

        checkout_url = _read(response, "checkout_url")
        session_id = _read(response, "session_id")
        if not checkout_url or not session_id:
            logger.error(f"Checkout session response missing fields: {response}")
            raise PaymentProviderError("Payment processor returned an incomplete session")

        return CheckoutSession(session_id=session_id, url=checkout_url)
