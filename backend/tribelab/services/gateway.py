"""
Razorpay gateway client.

Thin wrapper over the Razorpay REST API (basic auth with key id/secret) plus
HMAC-SHA256 signature checks for checkout callbacks and webhooks.
"""
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import httpx

from tribelab.core.config import settings
from tribelab.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(expected, signature)


class RazorpayClient:
    """Razorpay subscriptions/payments API client."""

    def __init__(
        self,
        key_id: str = None,
        key_secret: str = None,
        webhook_secret: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.BaseTransport = None,
    ):
        """
        Initialize the client. Unset values are read from settings at call time.

        Args:
            key_id: Razorpay key id
            key_secret: Razorpay key secret (also signs checkout callbacks)
            webhook_secret: Secret configured on the Razorpay webhook
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    @property
    def key_id(self) -> str:
        return self._key_id or settings.razorpay_key_id

    @property
    def key_secret(self) -> str:
        return self._key_secret or settings.razorpay_key_secret

    @property
    def webhook_secret(self) -> str:
        return self._webhook_secret or settings.razorpay_webhook_secret

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url or settings.razorpay_base_url,
            auth=(self.key_id, self.key_secret),
            timeout=self._timeout or settings.razorpay_timeout_seconds,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_configured:
            raise GatewayError("Razorpay credentials not configured", code="gateway_not_configured")

        try:
            with self._client() as client:
                response = client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.error(f"Razorpay {method} {path} failed: {str(e)}")
            raise GatewayError(f"Razorpay request failed: {str(e)}") from e

        if response.status_code >= 400:
            code = None
            description = response.text
            try:
                error = response.json().get("error") or {}
                code = error.get("code")
                description = error.get("description") or description
            except ValueError:
                pass
            logger.error(f"Razorpay {method} {path} returned {response.status_code}: {description}")
            raise GatewayError(
                f"Razorpay error: {description}",
                code=code,
                http_status=response.status_code,
            )

        return response.json()

    # Customers
    def create_customer(
        self,
        name: str,
        email: str,
        contact: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a customer, or return the existing one for the same email."""
        payload: Dict[str, Any] = {
            "name": name,
            "email": email,
            "fail_existing": "0",
            "notes": notes or {},
        }
        if contact:
            payload["contact"] = contact
        return self._request("POST", "/customers", json=payload)

    # Subscriptions
    def create_subscription(
        self,
        plan_id: str,
        customer_id: str,
        total_count: int,
        quantity: int = 1,
        customer_notify: bool = True,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/subscriptions",
            json={
                "plan_id": plan_id,
                "customer_id": customer_id,
                "total_count": total_count,
                "quantity": quantity,
                "customer_notify": 1 if customer_notify else 0,
                "notes": notes or {},
            },
        )

    def fetch_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/subscriptions/{subscription_id}")

    def cancel_subscription(self, subscription_id: str, cancel_at_cycle_end: bool = True) -> Dict[str, Any]:
        """
        Cancel a subscription.

        Args:
            subscription_id: Razorpay subscription id
            cancel_at_cycle_end: Keep the subscription running until the current period ends

        Returns:
            Updated subscription entity from Razorpay

        Raises:
            GatewayError: If Razorpay rejects the cancellation
        """
        return self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json={"cancel_at_cycle_end": 1 if cancel_at_cycle_end else 0},
        )

    # Payments
    def fetch_payment_details(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{payment_id}")

    # Signatures
    def verify_subscription_signature(self, subscription_id: str, payment_id: str, signature: str) -> bool:
        """Checkout callback signature: HMAC(payment_id|subscription_id, key_secret)."""
        if not self.key_secret:
            logger.error("Cannot verify subscription signature: key secret not configured")
            return False
        expected = _hmac_hex(self.key_secret, f"{payment_id}|{subscription_id}".encode("utf-8"))
        return _matches(expected, signature)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Order checkout signature: HMAC(order_id|payment_id, key_secret)."""
        if not self.key_secret:
            logger.error("Cannot verify payment signature: key secret not configured")
            return False
        expected = _hmac_hex(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        return _matches(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Webhook signature: HMAC(raw request body, webhook_secret)."""
        if not self.webhook_secret:
            logger.error("Cannot verify webhook signature: webhook secret not configured")
            return False
        return _matches(_hmac_hex(self.webhook_secret, body), signature)


# Global client instance
razorpay_client = RazorpayClient()
