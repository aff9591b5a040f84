from datetime import timedelta
from decimal import Decimal

import pytest

from services.decision_server.app.schemas import (
    ExtractedEntities,
    IssueType,
    MembershipTier,
    OrderItem,
    SolutionType,
)
from services.decision_server.app.solution_engine import REASON_FALLBACK, SolutionDecisionEngine, affected_amount
from tests.factories import NOW, make_customer, make_order


@pytest.fixture()
def engine():
    return SolutionDecisionEngine()


def late(minutes: float) -> ExtractedEntities:
    return ExtractedEntities(lateness_minutes=minutes)


@pytest.mark.parametrize("lateness", [60.5, 75, 90])
def test_very_late_credit_is_thirty_percent(engine, lateness):
    solution = engine.decide(IssueType.LATE_DELIVERY, make_order(total="500"), make_customer(), late(lateness), NOW)
    assert solution.type == SolutionType.CREDIT
    assert solution.amount == Decimal("150.00")


@pytest.mark.parametrize(
    "lateness, amount",
    [(12, Decimal("0.00")), (16, Decimal("50.00")), (31, Decimal("100.00"))],
)
def test_late_credit_rate_table(engine, lateness, amount):
    solution = engine.decide(IssueType.LATE_DELIVERY, make_order(total="500"), make_customer(), late(lateness), NOW)
    assert solution.type == SolutionType.CREDIT
    assert solution.amount == amount


def test_late_credit_capped_at_max_fee(engine):
    solution = engine.decide(IssueType.LATE_DELIVERY, make_order(total="1000"), make_customer(), late(70), NOW)
    assert solution.amount == Decimal("200.00")


@pytest.mark.parametrize("total", ["500", "2000"])
def test_extreme_lateness_refunds_whole_order(engine, total):
    order = make_order(total=total)
    solution = engine.decide(IssueType.LATE_DELIVERY, order, make_customer(), late(91), NOW)
    assert solution.type == SolutionType.REFUND
    assert solution.amount == order.total_amount
    assert "91 minutes late" in solution.reason


def test_affected_amount_matches_items():
    order = make_order(items=[OrderItem(name="Margherita Pizza", unit_price=Decimal("299"), quantity=1)])
    assert affected_amount(order, ["pizza"]) == Decimal("299.00")


def test_affected_amount_counts_quantity():
    order = make_order(items=[OrderItem(name="Soft Taco", unit_price=Decimal("129"), quantity=2)])
    assert affected_amount(order, ["taco"]) == Decimal("258.00")


def test_affected_amount_unmatched_falls_back_to_share_of_total():
    order = make_order(total="500")
    assert affected_amount(order, ["sushi"]) == Decimal("150.00")


def test_affected_amount_empty_claim_is_zero():
    assert affected_amount(make_order(), []) == Decimal("0.00")


def test_item_issue_redelivers_while_restaurant_open(engine):
    entities = ExtractedEntities(missing_items=["pizza"])
    solution = engine.decide(IssueType.MISSING_ITEM, make_order(), make_customer(), entities, NOW)
    assert solution.type == SolutionType.REDELIVERY
    assert solution.amount == Decimal("299.00")
    assert solution.estimated_delivery_minutes == 35


@pytest.mark.parametrize(
    "minutes_since_delivery, expected",
    [(119, SolutionType.REDELIVERY), (120, SolutionType.REFUND)],
)
def test_redelivery_window_is_exclusive(engine, minutes_since_delivery, expected):
    order = make_order(delivered_minutes_ago=minutes_since_delivery)
    entities = ExtractedEntities(missing_items=["pizza"])
    solution = engine.decide(IssueType.MISSING_ITEM, order, make_customer(), entities, NOW)
    assert solution.type == expected
    assert solution.amount == Decimal("299.00")


def test_wrong_order_without_items_uses_full_total(engine):
    order = make_order(total="640", delivered_minutes_ago=150)
    solution = engine.decide(IssueType.WRONG_ORDER, order, make_customer(), ExtractedEntities(), NOW)
    assert solution.type == SolutionType.REFUND
    assert solution.amount == Decimal("640.00")


def test_closed_restaurant_cannot_redeliver(engine):
    order = make_order(restaurant_close_time=NOW - timedelta(minutes=1))
    entities = ExtractedEntities(wrong_items=["breadsticks"])
    solution = engine.decide(IssueType.WRONG_ORDER, order, make_customer(), entities, NOW)
    assert solution.type == SolutionType.REFUND
    assert solution.amount == Decimal("129.00")


def test_premium_customer_gets_credit_with_bonus(engine):
    order = make_order(delivered_minutes_ago=150)
    entities = ExtractedEntities(missing_items=["pizza"])
    solution = engine.decide(IssueType.MISSING_ITEM, order, make_customer(MembershipTier.PRO), entities, NOW)
    assert solution.type == SolutionType.CREDIT
    assert solution.bonus_amount == Decimal("59.80")
    assert solution.amount == Decimal("358.80")


def test_premium_bonus_is_capped(engine):
    order = make_order(
        total="1500",
        delivered_minutes_ago=150,
        items=[OrderItem(name="Party Platter", unit_price=Decimal("1200"), quantity=1)],
    )
    entities = ExtractedEntities(wrong_items=["platter"])
    solution = engine.decide(IssueType.WRONG_ORDER, order, make_customer(MembershipTier.PRO_PLUS), entities, NOW)
    assert solution.bonus_amount == Decimal("100.00")
    assert solution.amount == Decimal("1300.00")


def test_refund_never_exceeds_order_total(engine):
    order = make_order(
        total="100",
        delivered_minutes_ago=150,
        items=[OrderItem(name="Margherita Pizza", unit_price=Decimal("299"), quantity=1)],
    )
    entities = ExtractedEntities(wrong_items=["pizza"])
    solution = engine.decide(IssueType.WRONG_ORDER, order, make_customer(), entities, NOW)
    assert solution.type == SolutionType.REFUND
    assert solution.amount == Decimal("100.00")


def test_refund_request_uses_eligibility(engine):
    order = make_order(total="400", ordered_at=NOW - timedelta(days=2))
    entities = ExtractedEntities(free_text_reason="food was cold")
    solution = engine.decide(IssueType.REFUND_REQUEST, order, make_customer(), entities, NOW)
    assert solution.type == SolutionType.REFUND
    assert solution.amount == Decimal("300.00")
    assert solution.reason == "food was cold"


def test_ineligible_refund_request_falls_back_to_credit(engine):
    order = make_order(refunded=True)
    solution = engine.decide(IssueType.REFUND_REQUEST, order, make_customer(), ExtractedEntities(), NOW)
    assert solution.type == SolutionType.CREDIT
    assert solution.amount == Decimal("49.00")


def test_unmatched_issue_gets_fallback_credit(engine):
    order = make_order(delivery_fee=None)
    solution = engine.decide(IssueType.GENERAL_QUERY, order, make_customer(), ExtractedEntities(), NOW)
    assert solution.type == SolutionType.CREDIT
    assert solution.amount == Decimal("50.00")
    assert solution.reason == REASON_FALLBACK


def test_strategy_fault_fails_open(engine):
    def broken(*_args):
        raise ZeroDivisionError("bad rate")

    engine._strategies[IssueType.LATE_DELIVERY] = broken
    outcome = engine.evaluate(IssueType.LATE_DELIVERY, make_order(), make_customer(), late(40), NOW)
    assert outcome.fallback is True
    assert outcome.value.type == SolutionType.CREDIT
    assert outcome.value.amount == Decimal("49.00")
