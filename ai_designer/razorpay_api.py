from __future__ import annotations

import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import httpx

from ai_designer.config import settings


class RazorpayApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


class RazorpayApiClient:
    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._timeout = settings.PAYMENT_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    async def create_order(
        self,
        *,
        key_id: str,
        key_secret: str,
        amount: Decimal,
        currency: str,
        notes: dict[str, str],
    ) -> dict[str, Any]:
        payload = {
            "amount": int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            "currency": currency,
            "receipt": "ai_tok_" + str(int(time.time() * 1000))[-10:],
            "notes": notes,
        }
        url = f"{settings.RAZORPAY_BASE_URL.rstrip('/')}/orders"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                auth=httpx.BasicAuth(key_id, key_secret),
            ) as client:
                response = await client.post(url, json=payload)
        except httpx.RequestError as exc:
            raise RazorpayApiError(message=f"Network error while calling Razorpay: {exc}") from exc

        if response.status_code >= 400:
            raise RazorpayApiError(
                message=f"Razorpay order creation failed ({response.status_code}): {response.text}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RazorpayApiError(message="Razorpay returned invalid JSON") from exc
        if not isinstance(body, dict) or not isinstance(body.get("id"), str):
            raise RazorpayApiError(message="Razorpay order response is missing id")
        return body
