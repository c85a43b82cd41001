from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Protocol

import httpx
from fastapi import Request

from skillify.core.errors import UpstreamError
from skillify.core.settings import settings


class RazorpayError(UpstreamError):
    pass


class PaymentGateway(Protocol):
    key_id: str

    async def create_order(
        self, *, amount_minor: int, currency: str, receipt: str
    ) -> Dict[str, Any]: ...

    def expected_signature(self, order_id: str, payment_id: str) -> str: ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool: ...


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over "order_id|payment_id", hex encoded."""
    body = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class RazorpayService:
    """
    Razorpay Orders API:
    - create_order: POST /v1/orders (basic auth key_id:key_secret)
    - signature check for the checkout callback
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.http = http
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = (
            key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        )
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.default_timeout = timeout or settings.RAZORPAY_TIMEOUT

    async def create_order(
        self, *, amount_minor: int, currency: str, receipt: str
    ) -> Dict[str, Any]:
        payload = {"amount": amount_minor, "currency": currency, "receipt": receipt}
        try:
            resp = await self.http.post(
                f"{self.base_url}/v1/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.default_timeout,
            )
        except httpx.TimeoutException as e:
            raise RazorpayError("Payment gateway timed out") from e
        except httpx.HTTPError as e:
            raise RazorpayError(f"Payment gateway unreachable: {e}") from e

        if resp.status_code != 200:
            raise RazorpayError(f"Create order failed: {resp.status_code} {resp.text}")

        data = resp.json()
        if not data.get("id"):
            raise RazorpayError("Gateway response carries no order id")
        return data

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        return sign_payment(self.key_secret, order_id, payment_id)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = self.expected_signature(order_id, payment_id)
        return hmac.compare_digest(expected, signature or "")


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway
