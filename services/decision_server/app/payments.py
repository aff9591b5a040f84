"""Refund, credit and redelivery gateways. Failures come back as results, never raised."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol
from uuid import uuid4

import httpx
from pydantic import BaseModel

logger = logging.getLogger("decision_server.payments")


class GatewayResult(BaseModel):
    success: bool
    transaction_id: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    def apply_refund(self, order_id: str, payment_id: str | None, amount: Decimal, reason: str) -> GatewayResult: ...

    def apply_credit(self, customer_id: str, amount: Decimal, reason: str) -> GatewayResult: ...

    def apply_redelivery(self, order_id: str, items: list[str]) -> GatewayResult: ...


class DemoPaymentGateway:
    """Accepts every request without moving money."""

    def apply_refund(self, order_id: str, payment_id: str | None, amount: Decimal, reason: str) -> GatewayResult:
        logger.info("refund_applied_demo order_id=%s amount=%s", order_id, amount)
        return GatewayResult(success=True, transaction_id=f"REF-{uuid4().hex[:12].upper()}")

    def apply_credit(self, customer_id: str, amount: Decimal, reason: str) -> GatewayResult:
        logger.info("credit_applied_demo customer_id=%s amount=%s", customer_id, amount)
        return GatewayResult(success=True, transaction_id=f"CRD-{uuid4().hex[:12].upper()}")

    def apply_redelivery(self, order_id: str, items: list[str]) -> GatewayResult:
        logger.info("redelivery_applied_demo order_id=%s items=%s", order_id, items)
        return GatewayResult(success=True, transaction_id=f"RDL-{uuid4().hex[:12].upper()}")


class HttpPaymentGateway:
    def __init__(self, base_url: str, timeout_s: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _post(self, path: str, payload: dict[str, Any]) -> GatewayResult:
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.post(f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("payment_gateway_error path=%s error=%s", path, exc)
            return GatewayResult(success=False, error=str(exc))
        return GatewayResult(success=True, transaction_id=body.get("transaction_id"))

    def apply_refund(self, order_id: str, payment_id: str | None, amount: Decimal, reason: str) -> GatewayResult:
        return self._post(
            "/refunds",
            {"order_id": order_id, "payment_id": payment_id, "amount": str(amount), "reason": reason},
        )

    def apply_credit(self, customer_id: str, amount: Decimal, reason: str) -> GatewayResult:
        return self._post(
            "/credits",
            {"customer_id": customer_id, "amount": str(amount), "reason": reason, "expiry_days": 90},
        )

    def apply_redelivery(self, order_id: str, items: list[str]) -> GatewayResult:
        return self._post("/redeliveries", {"order_id": order_id, "items": items})


def build_gateway(demo_mode: bool, base_url: str, timeout_s: float) -> PaymentGateway:
    if demo_mode:
        return DemoPaymentGateway()
    return HttpPaymentGateway(base_url, timeout_s=timeout_s)
