"""Compensation decisions for verified complaints."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable

from services.decision_server.app.config import Settings, settings as default_settings
from services.decision_server.app.outcome import Outcome, run_fail_open
from services.decision_server.app.schemas import (
    CustomerInfo,
    ExtractedEntities,
    IssueType,
    OrderDetails,
    Solution,
    SolutionType,
    to_money,
    utcnow,
)
from services.decision_server.app.verification import VerificationEngine, minutes_between, round_half_up

logger = logging.getLogger("decision_server.solution_engine")

REASON_FALLBACK = "compensation for inconvenience"

Strategy = Callable[[IssueType, OrderDetails, CustomerInfo, ExtractedEntities, datetime], Solution]


def affected_amount(order: OrderDetails, item_names: list[str], unmatched_rate: Decimal = Decimal("0.3")) -> Decimal:
    if not item_names:
        return Decimal("0.00")

    claimed = [name.lower() for name in item_names]
    total = Decimal("0")
    for item in order.items:
        lowered = item.name.lower()
        if any(name in lowered for name in claimed):
            total += item.unit_price * item.quantity

    if total == 0:
        return to_money(order.total_amount * unmatched_rate)
    return to_money(total)


class SolutionDecisionEngine:
    def __init__(self, config: Settings | None = None, verifier: VerificationEngine | None = None):
        self.config = config or default_settings
        self.verifier = verifier or VerificationEngine(self.config)
        self._strategies: dict[IssueType, Strategy] = {
            IssueType.WRONG_ORDER: self._decide_item_issue,
            IssueType.MISSING_ITEM: self._decide_item_issue,
            IssueType.LATE_DELIVERY: self._decide_late_delivery,
            IssueType.REFUND_REQUEST: self._decide_refund_request,
        }

    def decide(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime | None = None,
    ) -> Solution:
        return self.evaluate(issue_type, order, customer, entities, now).value

    def evaluate(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime | None = None,
    ) -> Outcome[Solution]:
        snapshot = now or utcnow()
        strategy = self._strategies.get(issue_type, self._decide_fallback)
        outcome = run_fail_open(
            f"decide_{issue_type.value.lower()}",
            lambda: strategy(issue_type, order, customer, entities, snapshot),
            lambda: self.fallback_solution(order),
        )
        logger.info(
            "solution order_id=%s issue=%s type=%s amount=%s fallback=%s",
            order.id,
            issue_type.value,
            outcome.value.type.value,
            outcome.value.amount,
            outcome.fallback,
        )
        return outcome

    def fallback_solution(self, order: OrderDetails) -> Solution:
        amount = order.delivery_fee if order.delivery_fee else self.config.fallback_credit_amount
        return Solution(type=SolutionType.CREDIT, amount=to_money(amount), reason=REASON_FALLBACK)

    def redelivery_possible(self, order: OrderDetails, now: datetime) -> bool:
        restaurant_is_open = now < order.restaurant_close_time
        since_delivery = minutes_between(now, order.delivered_at) if order.delivered_at else 0.0
        return restaurant_is_open and since_delivery < self.config.redelivery_window_minutes

    def _decide_item_issue(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime,
    ) -> Solution:
        rate = self.config.unmatched_items_rate
        if issue_type == IssueType.WRONG_ORDER:
            reason = "Wrong items in order"
            if entities.wrong_items:
                amount = affected_amount(order, entities.wrong_items, rate)
            else:
                amount = to_money(order.total_amount)
        else:
            reason = "Missing items in order"
            amount = affected_amount(order, entities.missing_items, rate)

        if self.redelivery_possible(order, now):
            return Solution(
                type=SolutionType.REDELIVERY,
                amount=amount,
                reason=reason,
                estimated_delivery_minutes=self.config.redelivery_estimate_minutes,
            )

        if customer.membership_tier.is_premium:
            bonus = to_money(min(amount * self.config.premium_bonus_rate, self.config.max_bonus_amount))
            return Solution(type=SolutionType.CREDIT, amount=amount + bonus, reason=reason, bonus_amount=bonus)

        return Solution(
            type=SolutionType.REFUND,
            amount=min(amount, to_money(order.total_amount)),
            reason=reason,
        )

    def _decide_late_delivery(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime,
    ) -> Solution:
        lateness = entities.lateness_minutes or 0.0
        shown = round_half_up(lateness)

        if lateness > self.config.extreme_lateness_minutes:
            return Solution(
                type=SolutionType.REFUND,
                amount=to_money(order.total_amount),
                reason=f"Extreme delivery delay ({shown} minutes late)",
            )

        rate = Decimal("0")
        if lateness > 60:
            rate = self.config.very_late_rate
        elif lateness > 30:
            rate = self.config.moderately_late_rate
        elif lateness > 15:
            rate = self.config.slightly_late_rate

        amount = to_money(min(order.total_amount * rate, self.config.max_late_fee))
        return Solution(type=SolutionType.CREDIT, amount=amount, reason=f"Delivery delay ({shown} minutes late)")

    def _decide_refund_request(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime,
    ) -> Solution:
        eligibility = self.verifier.check_refund_eligibility(order, customer, now)
        if not eligibility.eligible:
            # callers are expected to reject ineligible refunds before deciding
            logger.warning("refund_request_not_eligible order_id=%s reason=%s", order.id, eligibility.reason)
            return self.fallback_solution(order)
        reason = entities.free_text_reason or f"Refund request ({eligibility.percentage}% of order)"
        return Solution(type=SolutionType.REFUND, amount=eligibility.amount, reason=reason)

    def _decide_fallback(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        customer: CustomerInfo,
        entities: ExtractedEntities,
        now: datetime,
    ) -> Solution:
        return self.fallback_solution(order)
