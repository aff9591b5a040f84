"""Complaint verification rules.

Each issue type has its own rule chain, looked up from a table keyed by
``IssueType``. Within a chain the first matching rule decides the result.
Any fault inside a chain yields a verified result: customer goodwill is
preferred over strict correctness.
"""

from __future__ import annotations

import logging
import math
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
    RefundEligibility,
    VerificationResult,
    to_money,
    utcnow,
)

logger = logging.getLogger("decision_server.verification")

REASON_TRUSTED = "trusted/flagged"
REASON_ITEMS_NOT_IN_ORDER = "claimed items not in order"
REASON_TOO_LATE = "too long after delivery"
REASON_NOT_DELIVERED = "order not delivered yet"
REASON_RISK = "risk score exceeds threshold"
REASON_ACCEPTED = "accepted"
REASON_ON_TIME = "on time or early"
REASON_NO_CHECK = "no verification required"
REASON_FAIL_OPEN = "verification error, benefit of doubt"

Rule = Callable[[OrderDetails, ExtractedEntities, CustomerInfo, datetime], VerificationResult]


def minutes_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 60.0


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def match_claimed_items(order: OrderDetails, claimed: list[str]) -> list[str]:
    ordered = [item.name.lower() for item in order.items]
    return [name for name in claimed if any(name.lower() in o for o in ordered)]


class VerificationEngine:
    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings
        self._rules: dict[IssueType, Rule] = {
            IssueType.WRONG_ORDER: self._verify_wrong_order,
            IssueType.MISSING_ITEM: self._verify_missing_item,
            IssueType.LATE_DELIVERY: self._verify_late_delivery,
        }

    def verify(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        entities: ExtractedEntities,
        customer: CustomerInfo,
        now: datetime | None = None,
    ) -> VerificationResult:
        return self.evaluate(issue_type, order, entities, customer, now).value

    def evaluate(
        self,
        issue_type: IssueType,
        order: OrderDetails,
        entities: ExtractedEntities,
        customer: CustomerInfo,
        now: datetime | None = None,
    ) -> Outcome[VerificationResult]:
        snapshot = now or utcnow()
        rule = self._rules.get(issue_type, self._verify_nothing)
        outcome = run_fail_open(
            f"verify_{issue_type.value.lower()}",
            lambda: rule(order, entities, customer, snapshot),
            lambda: VerificationResult(verified=True, reason=REASON_FAIL_OPEN),
        )
        logger.info(
            "verification order_id=%s issue=%s verified=%s reason=%s fallback=%s",
            order.id,
            issue_type.value,
            outcome.value.verified,
            outcome.value.reason,
            outcome.fallback,
        )
        return outcome

    # ── shared gates ──

    def _is_trusted(self, order: OrderDetails, customer: CustomerInfo) -> bool:
        return order.problem_flag or customer.membership_tier.is_premium

    def _timeliness_and_risk(
        self,
        order: OrderDetails,
        customer: CustomerInfo,
        now: datetime,
        window_minutes: float,
        **derived,
    ) -> VerificationResult:
        if order.delivered_at is not None:
            if minutes_between(now, order.delivered_at) > window_minutes:
                return VerificationResult(verified=False, reason=REASON_TOO_LATE, **derived)
        if customer.fraud_risk_score > self.config.fraud_risk_threshold:
            return VerificationResult(verified=False, reason=REASON_RISK, **derived)
        if customer.complaint_frequency > self.config.complaint_frequency_threshold:
            logger.warning(
                "high_complaint_frequency customer_id=%s complaint_frequency=%s",
                customer.id,
                customer.complaint_frequency,
            )
        return VerificationResult(verified=True, reason=REASON_ACCEPTED, **derived)

    # ── rule chains ──

    def _verify_wrong_order(
        self, order: OrderDetails, entities: ExtractedEntities, customer: CustomerInfo, now: datetime
    ) -> VerificationResult:
        if self._is_trusted(order, customer):
            return VerificationResult(verified=True, reason=REASON_TRUSTED)
        if order.delivered_at is None:
            return VerificationResult(verified=False, reason=REASON_NOT_DELIVERED)
        return self._timeliness_and_risk(order, customer, now, self.config.wrong_order_window_minutes)

    def _verify_missing_item(
        self, order: OrderDetails, entities: ExtractedEntities, customer: CustomerInfo, now: datetime
    ) -> VerificationResult:
        if self._is_trusted(order, customer):
            return VerificationResult(verified=True, reason=REASON_TRUSTED)
        valid = match_claimed_items(order, entities.missing_items)
        if entities.missing_items and not valid:
            return VerificationResult(verified=False, reason=REASON_ITEMS_NOT_IN_ORDER, valid_missing_items=[])
        if order.delivered_at is None:
            return VerificationResult(verified=False, reason=REASON_NOT_DELIVERED, valid_missing_items=valid)
        return self._timeliness_and_risk(
            order,
            customer,
            now,
            self.config.missing_item_window_minutes,
            valid_missing_items=valid,
        )

    def _verify_late_delivery(
        self, order: OrderDetails, entities: ExtractedEntities, customer: CustomerInfo, now: datetime
    ) -> VerificationResult:
        arrived = order.delivered_at or now
        lateness = minutes_between(arrived, order.estimated_delivery_time)
        if lateness <= 0:
            return VerificationResult(verified=False, reason=REASON_ON_TIME, lateness_minutes=0.0)
        if lateness <= self.config.acceptable_lateness_minutes:
            return VerificationResult(
                verified=False,
                reason=(
                    f"Delivery was only {round_half_up(lateness)} minutes late, "
                    "within acceptable range"
                ),
                lateness_minutes=lateness,
            )
        if self._is_trusted(order, customer):
            return VerificationResult(verified=True, reason=REASON_TRUSTED, lateness_minutes=lateness)
        result = self._timeliness_and_risk(
            order,
            customer,
            now,
            self.config.late_delivery_window_hours * 60,
            lateness_minutes=lateness,
        )
        if result.verified:
            return result.model_copy(
                update={"reason": f"{REASON_ACCEPTED}: delivery was {round_half_up(lateness)} minutes late"}
            )
        return result

    def _verify_nothing(
        self, order: OrderDetails, entities: ExtractedEntities, customer: CustomerInfo, now: datetime
    ) -> VerificationResult:
        return VerificationResult(verified=True, reason=REASON_NO_CHECK)

    # ── refund eligibility ──

    def check_refund_eligibility(
        self,
        order: OrderDetails,
        customer: CustomerInfo,
        now: datetime | None = None,
    ) -> RefundEligibility:
        snapshot = now or utcnow()
        if order.refunded:
            return RefundEligibility(eligible=False, reason="Order has already been refunded")

        days_since_order = minutes_between(snapshot, order.ordered_at) / (60 * 24)
        limit = self.config.refund_eligibility_days
        if days_since_order > limit:
            return RefundEligibility(eligible=False, reason=f"Order is more than {limit} days old")

        percentage = 100
        if not customer.membership_tier.is_premium:
            if days_since_order > 3:
                percentage = 50
            elif days_since_order > 1:
                percentage = 75

        amount = to_money(order.total_amount * Decimal(percentage) / Decimal(100))
        return RefundEligibility(
            eligible=True,
            reason=f"Eligible for {percentage}% refund",
            amount=amount,
            percentage=percentage,
        )
