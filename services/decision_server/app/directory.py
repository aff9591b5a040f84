"""Customer and order lookups.

The decision core only reads these facts. When a lookup fails the
conversation carries on with placeholder records instead of aborting.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from services.decision_server.app.schemas import (
    CustomerInfo,
    MembershipTier,
    OrderDetails,
    OrderItem,
    to_money,
    utcnow,
)

logger = logging.getLogger("decision_server.directory")

DEMO_ORDER_STATUSES = ["CONFIRMED", "PREPARING", "READY_FOR_PICKUP", "IN_TRANSIT", "DELIVERED"]
DEMO_RESTAURANTS = [
    "Taco Bell",
    "McDonald's",
    "Pizza Hut",
    "Domino's",
    "Subway",
    "KFC",
    "Burger King",
    "Starbucks",
]
DEMO_MENUS: dict[str, list[tuple[str, str, int]]] = {
    "Taco Bell": [("Crunchwrap Supreme", "199", 1), ("Nachos BellGrande", "179", 1), ("Soft Taco", "129", 2)],
    "McDonald's": [
        ("Big Mac", "189", 1),
        ("McChicken", "159", 1),
        ("French Fries (Large)", "99", 1),
        ("Coca-Cola (Medium)", "79", 2),
    ],
    "Pizza Hut": [
        ("Pepperoni Pizza (Medium)", "349", 1),
        ("Garlic Breadsticks", "129", 1),
        ("Sprite (Large)", "89", 1),
    ],
    "Domino's": [
        ("Margherita Pizza (Large)", "299", 1),
        ("Chicken Wings", "249", 1),
        ("Chocolate Lava Cake", "99", 2),
    ],
}
DEFAULT_MENU = [("Specialty Item 1", "199", 1), ("Specialty Item 2", "149", 2), ("Beverage", "79", 1)]
FIRST_NAMES = ["Rahul", "Priya", "Amit", "Sneha", "Raj", "Ananya", "Vikram", "Neha"]
LAST_NAMES = ["Sharma", "Patel", "Singh", "Kumar", "Joshi", "Shah", "Gupta", "Verma"]
DEMO_DELIVERY_FEE = Decimal("49")
DEMO_TAX_RATE = Decimal("0.05")


def _seed(identifier: str) -> int:
    digits = re.sub(r"\D", "", identifier)
    return int(digits) if digits else 12345


def placeholder_customer(customer_id: str) -> CustomerInfo:
    return CustomerInfo(id=customer_id, name="Customer", membership_tier=MembershipTier.REGULAR)


def placeholder_order(order_id: str, now: datetime | None = None) -> OrderDetails:
    stamp = now or utcnow()
    return OrderDetails(
        id=order_id,
        restaurant_id="unknown",
        restaurant_name="Unknown Restaurant",
        items=[],
        total_amount=Decimal("0.00"),
        ordered_at=stamp,
        estimated_delivery_time=stamp,
        delivered_at=None,
        restaurant_close_time=stamp,
        status="UNKNOWN",
    )


class Directory(Protocol):
    def get_customer(self, customer_id: str) -> CustomerInfo: ...

    def get_order(self, order_id: str) -> OrderDetails: ...


class DemoDirectory:
    """Deterministic customers and orders derived from the digits of their ids."""

    def get_customer(self, customer_id: str) -> CustomerInfo:
        n = _seed(customer_id)
        first = FIRST_NAMES[n % len(FIRST_NAMES)]
        last = LAST_NAMES[(n + 3) % len(LAST_NAMES)]
        return CustomerInfo(
            id=customer_id,
            name=f"{first} {last}",
            membership_tier=list(MembershipTier)[n % 3],
            fraud_risk_score=(n % 10) / 10,
            complaint_frequency=n % 8,
            email=f"{first.lower()}.{last.lower()}@example.com",
        )

    def get_order(self, order_id: str, now: datetime | None = None) -> OrderDetails:
        n = _seed(order_id)
        stamp = now or utcnow()
        status = DEMO_ORDER_STATUSES[n % len(DEMO_ORDER_STATUSES)]
        restaurant_index = n % len(DEMO_RESTAURANTS)
        restaurant = DEMO_RESTAURANTS[restaurant_index]
        items = [
            OrderItem(name=name, unit_price=Decimal(price), quantity=qty)
            for name, price, qty in DEMO_MENUS.get(restaurant, DEFAULT_MENU)
        ]
        subtotal = sum((i.unit_price * i.quantity for i in items), Decimal("0"))
        taxes = (subtotal * DEMO_TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

        delivered_at = stamp - timedelta(minutes=10) if status == "DELIVERED" else None
        if delivered_at is not None:
            estimated = delivered_at - timedelta(minutes=25)
        else:
            estimated = stamp + timedelta(minutes=20)

        return OrderDetails(
            id=order_id,
            restaurant_id=f"rest_{restaurant_index}",
            restaurant_name=restaurant,
            items=items,
            total_amount=to_money(subtotal + taxes + DEMO_DELIVERY_FEE),
            ordered_at=stamp - timedelta(hours=1),
            estimated_delivery_time=estimated,
            delivered_at=delivered_at,
            restaurant_close_time=stamp + timedelta(hours=5),
            status=status,
            delivery_fee=DEMO_DELIVERY_FEE,
            payment_id=f"pay_{order_id}",
        )


class HttpDirectory:
    def __init__(self, base_url: str, timeout_s: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _get(self, path: str) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout_s) as client:
            response = client.get(f"{self.base_url}{path}")
            response.raise_for_status()
            return response.json()

    def get_customer(self, customer_id: str) -> CustomerInfo:
        try:
            return CustomerInfo.model_validate(self._get(f"/customers/{customer_id}"))
        except (httpx.HTTPError, ValidationError, ValueError) as exc:
            logger.error("customer_lookup_failed customer_id=%s error=%s", customer_id, exc)
            return placeholder_customer(customer_id)

    def get_order(self, order_id: str) -> OrderDetails:
        try:
            return OrderDetails.model_validate(self._get(f"/orders/{order_id}"))
        except (httpx.HTTPError, ValidationError, ValueError) as exc:
            logger.error("order_lookup_failed order_id=%s error=%s", order_id, exc)
            return placeholder_order(order_id)


def build_directory(demo_mode: bool, base_url: str, timeout_s: float) -> Directory:
    if demo_mode:
        return DemoDirectory()
    return HttpDirectory(base_url, timeout_s=timeout_s)
