"""
Unit tests for the Razorpay client.

Signature checks use known HMAC values; API calls run against an
httpx.MockTransport so no network access is needed.
"""
import hashlib
import hmac
import json

import httpx
import pytest

from tribelab.core.exceptions import GatewayError
from tribelab.services.gateway import RazorpayClient

KEY_SECRET = "rzp_secret_test"
WEBHOOK_SECRET = "whsec_test"


def _client(handler=None, **overrides):
    params = {
        "key_id": "rzp_test_key",
        "key_secret": KEY_SECRET,
        "webhook_secret": WEBHOOK_SECRET,
        "base_url": "https://api.razorpay.test/v1",
    }
    params.update(overrides)
    if handler is not None:
        params["transport"] = httpx.MockTransport(handler)
    return RazorpayClient(**params)


class TestSignatures:
    """HMAC-SHA256 signature checks."""

    def test_subscription_signature_uses_payment_then_subscription(self):
        client = _client()
        signature = hmac.new(KEY_SECRET.encode(), b"pay_1|sub_1", hashlib.sha256).hexdigest()

        assert client.verify_subscription_signature("sub_1", "pay_1", signature) is True
        assert client.verify_subscription_signature("sub_2", "pay_1", signature) is False

    def test_payment_signature_uses_order_then_payment(self):
        client = _client()
        signature = hmac.new(KEY_SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()

        assert client.verify_payment_signature("order_1", "pay_1", signature) is True

    def test_webhook_signature_covers_raw_body(self):
        client = _client()
        body = b'{"event":"subscription.charged"}'
        signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

        assert client.verify_webhook_signature(body, signature) is True
        assert client.verify_webhook_signature(body + b" ", signature) is False

    def test_empty_signature_never_verifies(self):
        client = _client()

        assert client.verify_subscription_signature("sub_1", "pay_1", "") is False
        assert client.verify_webhook_signature(b"{}", None) is False


class TestApiCalls:
    """REST calls through a mock transport."""

    def test_cancel_sends_cycle_end_flag(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"id": "sub_1", "status": "cancelled"})

        result = _client(handler).cancel_subscription("sub_1", cancel_at_cycle_end=False)

        assert result["status"] == "cancelled"
        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/subscriptions/sub_1/cancel"
        assert seen["body"] == {"cancel_at_cycle_end": 0}
        assert seen["auth"].startswith("Basic ")

    def test_error_response_raises_gateway_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Subscription is not cancellable"}},
            )

        with pytest.raises(GatewayError) as exc_info:
            _client(handler).cancel_subscription("sub_1")

        assert exc_info.value.code == "BAD_REQUEST_ERROR"
        assert exc_info.value.http_status == 400
        assert "not cancellable" in exc_info.value.message

    def test_transport_failure_raises_gateway_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError):
            _client(handler).fetch_subscription("sub_1")

    def test_unconfigured_client_refuses_calls(self):
        client = RazorpayClient(key_id="", key_secret="")

        with pytest.raises(GatewayError) as exc_info:
            client.fetch_payment_details("pay_1")

        assert exc_info.value.code == "gateway_not_configured"
