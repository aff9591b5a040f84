from datetime import datetime, timedelta, timezone
from decimal import Decimal

from services.decision_server.app.schemas import (
    CustomerInfo,
    MembershipTier,
    Message,
    OrderDetails,
    OrderItem,
    Resolution,
    Session,
    SolutionType,
)

NOW = datetime(2025, 6, 1, 13, 0, tzinfo=timezone.utc)


def make_customer(tier: MembershipTier = MembershipTier.REGULAR, **overrides) -> CustomerInfo:
    fields = {
        "id": "CUST-1",
        "name": "Asha Rao",
        "membership_tier": tier,
        "fraud_risk_score": 0.1,
        "complaint_frequency": 0,
    }
    fields.update(overrides)
    return CustomerInfo(**fields)


def make_order(
    *,
    total: str = "500.00",
    delivered_minutes_ago: float | None = 10,
    late_by_minutes: float = 0,
    items: list[OrderItem] | None = None,
    now: datetime = NOW,
    **overrides,
) -> OrderDetails:
    delivered_at = now - timedelta(minutes=delivered_minutes_ago) if delivered_minutes_ago is not None else None
    anchor = delivered_at or now
    fields = {
        "id": "ORD-1",
        "restaurant_id": "rest_1",
        "restaurant_name": "Pizza Hut",
        "items": items
        if items is not None
        else [
            OrderItem(name="Margherita Pizza", unit_price=Decimal("299"), quantity=1),
            OrderItem(name="Garlic Breadsticks", unit_price=Decimal("129"), quantity=1),
        ],
        "total_amount": Decimal(total),
        "ordered_at": anchor - timedelta(minutes=60),
        "estimated_delivery_time": anchor - timedelta(minutes=late_by_minutes),
        "delivered_at": delivered_at,
        "restaurant_close_time": now + timedelta(hours=4),
        "status": "DELIVERED" if delivered_at is not None else "IN_TRANSIT",
        "delivery_fee": Decimal("49"),
    }
    fields.update(overrides)
    return OrderDetails(**fields)


def make_session(
    customer: CustomerInfo | None = None,
    orders: list[OrderDetails] | None = None,
    user_messages: list[str] | None = None,
    resolutions: int = 0,
) -> Session:
    session = Session(
        id="SES-test",
        customer_id=(customer or make_customer()).id,
        customer=customer or make_customer(),
        orders=orders if orders is not None else [make_order()],
        created_at=NOW,
        last_activity_at=NOW,
    )
    for text in user_messages or []:
        session.messages.append(Message(role="user", content=text, timestamp=NOW))
    for i in range(resolutions):
        session.resolutions.append(
            Resolution(type=SolutionType.CREDIT, order_id=f"ORD-{i}", amount=Decimal("10.00"), timestamp=NOW, success=True)
        )
    return session
