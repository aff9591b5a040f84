"""Escalation policy.

Decides whether a session needs a human and how urgently. It never
changes session state; the conversation layer applies its decisions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from hashlib import sha256

from services.decision_server.app.config import Settings, settings as default_settings
from services.decision_server.app.outcome import run_fail_open
from services.decision_server.app.schemas import (
    EscalationDecision,
    EscalationTicket,
    MembershipTier,
    Priority,
    Session,
    utcnow,
)

logger = logging.getLogger("decision_server.escalation")

FRUSTRATION_PHRASES = (
    "speak to a human",
    "speak to a person",
    "talk to a manager",
    "talk to a supervisor",
    "ridiculous",
    "unacceptable",
    "unhelpful",
    "useless",
    "waste of time",
    "are you a bot",
)

ISSUE_HINTS = (
    (("wrong", "incorrect"), "Wrong items received"),
    (("missing",), "Missing items"),
    (("late", "delay"), "Late delivery"),
    (("refund",), "Refund requested"),
)


def contains_frustration(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in FRUSTRATION_PHRASES)


class EscalationPolicy:
    """Decides when a conversation goes to a human agent, and how urgently."""

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    def frustration_count(self, session: Session) -> int:
        return sum(1 for m in session.messages if m.role == "user" and contains_frustration(m.content))

    def has_high_value_order(self, session: Session) -> bool:
        return any(order.total_amount > self.config.high_value_order for order in session.orders)

    def should_auto_escalate(self, session: Session) -> bool:
        if session.customer.membership_tier == MembershipTier.PRO_PLUS:
            return True
        if self.frustration_count(session) >= self.config.frustration_message_limit:
            return True
        if self.has_high_value_order(session):
            return True
        return len(session.resolutions) >= self.config.resolution_limit

    def determine_priority(self, session: Session) -> Priority:
        if session.customer.membership_tier.is_premium:
            return Priority.HIGH
        if len(session.messages) > self.config.escalation_message_count:
            return Priority.HIGH
        if self.has_high_value_order(session):
            return Priority.HIGH
        if session.customer.complaint_frequency > self.config.priority_complaint_frequency:
            return Priority.HIGH
        return Priority.MEDIUM

    def evaluate(self, session: Session) -> EscalationDecision:
        outcome = run_fail_open(
            "escalation_evaluate",
            lambda: EscalationDecision(
                priority=self.determine_priority(session),
                auto_escalate=self.should_auto_escalate(session),
            ),
            lambda: EscalationDecision(priority=Priority.MEDIUM, auto_escalate=False),
        )
        return outcome.value

    def is_sentiment_critical(self, score: float) -> bool:
        return score < self.config.escalation_sentiment

    def create_agent_notes(self, session: Session) -> str:
        customer = session.customer
        notes = [
            f"Customer: {customer.name} ({customer.membership_tier.value})",
            f"Customer ID: {session.customer_id}",
        ]

        if session.orders:
            latest = session.orders[0]
            notes.append(f"Latest Order: #{latest.id} from {latest.restaurant_name}")
            notes.append(f"Order Status: {latest.status}")
            notes.append(f"Order Total: {latest.total_amount:.2f}")
        else:
            notes.append("No order details available")

        if session.resolutions:
            notes.append("")
            notes.append("Resolutions Applied:")
            for r in session.resolutions:
                state = "ok" if r.success else "failed"
                notes.append(f"- {r.type.value}: {r.amount:.2f} for Order #{r.order_id} ({state})")

        user_text = [m.content.lower() for m in session.messages if m.role == "user"]
        issues = [
            label
            for keywords, label in ISSUE_HINTS
            if any(k in text for text in user_text for k in keywords)
        ]
        notes.append("")
        notes.append("Detected Issues:")
        notes.extend(f"- {issue}" for issue in issues or ["No specific issues detected"])
        return "\n".join(notes)

    def build_ticket(self, session: Session, reason: str, now: datetime | None = None) -> EscalationTicket:
        digest = sha256(session.id.encode("utf-8")).hexdigest()[:12]
        ticket = EscalationTicket(
            ticket_id=f"ESC-{digest.upper()}",
            session_id=session.id,
            priority=self.determine_priority(session),
            reason=reason,
            agent_notes=self.create_agent_notes(session),
            created_at=now or utcnow(),
        )
        logger.info(
            "escalation_ticket session_id=%s ticket_id=%s priority=%s reason=%s",
            session.id,
            ticket.ticket_id,
            ticket.priority.value,
            reason,
        )
        return ticket
