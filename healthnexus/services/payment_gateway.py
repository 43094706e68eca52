"""Payment gateway client used to verify booking payments."""

import re
from dataclasses import dataclass
from urllib.parse import quote

import httpx
import structlog

from healthnexus.config import settings

logger = structlog.get_logger(__name__)

# Intent states that mean the funds are secured
PAID_STATUSES = frozenset({"succeeded", "requires_capture"})

REFERENCE_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,255}")


class PaymentGatewayUnavailable(Exception):
    """Gateway is not configured or could not be reached."""


@dataclass(frozen=True)
class PaymentVerification:
    """Result of looking up a payment intent."""

    reference: str
    status: str

    @property
    def paid(self) -> bool:
        """Check if the intent is in a paid state."""
        return self.status in PAID_STATUSES


class PaymentGateway:
    """Thin async client for a Stripe-style payment intents API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize gateway client.

        Args:
            base_url: Gateway API root
            api_key: Secret key sent as a bearer token; empty disables the gateway
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used in tests)
        """
        self.base_url = (base_url or settings.payment_gateway_url).rstrip("/")
        self.api_key = settings.payment_gateway_api_key if api_key is None else api_key
        self.timeout = timeout or settings.payment_gateway_timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)

    async def verify(self, reference: str) -> PaymentVerification:
        """
        Look up a payment intent.

        Args:
            reference: Payment intent identifier supplied by the client

        Returns:
            Verification result with the gateway's intent status

        Raises:
            PaymentGatewayUnavailable: If the gateway is not configured, times
                out, or answers with a server error
        """
        if not self.configured:
            raise PaymentGatewayUnavailable("Payment gateway is not configured")

        if not REFERENCE_PATTERN.fullmatch(reference):
            logger.info("payment_reference_malformed", reference=reference)
            return PaymentVerification(reference=reference, status="invalid")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(
                    f"/v1/payment_intents/{quote(reference, safe='')}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.warning("payment_gateway_request_failed", reference=reference, error=str(e))
            raise PaymentGatewayUnavailable(str(e)) from e

        if response.status_code >= 500:
            logger.warning(
                "payment_gateway_error_response",
                reference=reference,
                status_code=response.status_code,
            )
            raise PaymentGatewayUnavailable(f"Gateway returned {response.status_code}")

        if response.status_code != 200:
            # Unknown or foreign intent
            logger.info(
                "payment_intent_rejected",
                reference=reference,
                status_code=response.status_code,
            )
            return PaymentVerification(reference=reference, status="invalid")

        try:
            payload = response.json()
        except ValueError as e:
            logger.warning("payment_gateway_malformed_response", reference=reference)
            raise PaymentGatewayUnavailable("Gateway returned a non-JSON response") from e
        if not isinstance(payload, dict):
            raise PaymentGatewayUnavailable("Gateway returned an unexpected payload")

        status = str(payload.get("status", "unknown"))
        logger.info("payment_intent_verified", reference=reference, status=status)
        return PaymentVerification(reference=reference, status=status)


def get_payment_gateway() -> PaymentGateway:
    """Dependency for getting the payment gateway client."""
    return PaymentGateway()
