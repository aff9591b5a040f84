"""Conversation turns.

Each message is classified, routed to a handler by intent, verified,
compensated and recorded under the session's lock, then checked for
auto-escalation before the reply is saved.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Callable

from services.decision_server.app.config import Settings, settings as default_settings
from services.decision_server.app.directory import Directory
from services.decision_server.app.errors import SessionClosedError, SessionNotFoundError
from services.decision_server.app.escalation import EscalationPolicy
from services.decision_server.app.language import KeywordLanguageProcessor, LanguageProcessor
from services.decision_server.app.outcome import run_fail_open
from services.decision_server.app.payments import GatewayResult, PaymentGateway
from services.decision_server.app.repository import SessionLocks, SessionStore
from services.decision_server.app.responses import (
    auto_escalation_note,
    escalation_message,
    general_message,
    no_order_message,
    order_status_message,
    refund_rejected_message,
    resolution_message,
    verification_failed_message,
    welcome_message,
)
from services.decision_server.app.schemas import (
    EscalationTicket,
    ExtractedEntities,
    Intent,
    IssueType,
    OrderDetails,
    Resolution,
    Session,
    SessionStatus,
    Solution,
    SolutionType,
    utcnow,
)
from services.decision_server.app.session_machine import SessionStateMachine
from services.decision_server.app.solution_engine import SolutionDecisionEngine
from services.decision_server.app.verification import REASON_RISK, VerificationEngine

logger = logging.getLogger("decision_server.conversation")

Handler = Callable[[Session, Intent, ExtractedEntities, datetime], str]


class ConversationService:
    """Runs one customer turn through classification, verification, compensation and escalation.

    Turns on the same session are serialized by a per-session lock. Turns on
    different sessions share nothing but the store.
    """

    def __init__(
        self,
        store: SessionStore,
        directory: Directory,
        gateway: PaymentGateway,
        language: LanguageProcessor | None = None,
        config: Settings | None = None,
        locks: SessionLocks | None = None,
    ):
        self.config = config or default_settings
        self.store = store
        self.directory = directory
        self.gateway = gateway
        self.language = language or KeywordLanguageProcessor()
        self.locks = locks or SessionLocks()
        self.machine = SessionStateMachine()
        self.verifier = VerificationEngine(self.config)
        self.solutions = SolutionDecisionEngine(self.config, verifier=self.verifier)
        self.escalation = EscalationPolicy(self.config)
        self._handlers: dict[IssueType, Handler] = {
            IssueType.WRONG_ORDER: self._handle_complaint,
            IssueType.MISSING_ITEM: self._handle_complaint,
            IssueType.LATE_DELIVERY: self._handle_complaint,
            IssueType.REFUND_REQUEST: self._handle_refund_request,
            IssueType.ESCALATION_REQUEST: self._handle_escalation_request,
            IssueType.ORDER_STATUS: self._handle_order_status,
            IssueType.GENERAL_QUERY: self._handle_general,
        }

    # ── lifecycle ──

    def start(
        self,
        customer_id: str,
        order_ids: list[str],
        now: datetime | None = None,
    ) -> tuple[Session, str]:
        stamp = now or utcnow()
        customer = self.directory.get_customer(customer_id)
        orders = [self.directory.get_order(order_id) for order_id in order_ids]

        session = self.machine.start(customer, orders, order_ids=order_ids, now=stamp)
        welcome = welcome_message(customer, orders, now=stamp)
        self.machine.record_message(session, "assistant", welcome, now=stamp)
        self.store.save(session)
        return session, welcome

    def get_session(self, session_id: str) -> Session:
        session = self.store.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def end(self, session_id: str, now: datetime | None = None) -> Session:
        with self.locks.hold(session_id):
            session = self._load_active(session_id)
            self.machine.end(session, now=now)
            self.store.save(session)
            self.store.discard(session_id)
        self.locks.forget(session_id)
        return session

    def escalate(self, session_id: str, now: datetime | None = None) -> tuple[Session, EscalationTicket]:
        stamp = now or utcnow()
        with self.locks.hold(session_id):
            session = self._load_active(session_id)
            ticket = self._escalate(session, "customer_request", stamp)
            self.store.save(session)
        return session, ticket

    # ── turns ──

    def post_message(self, session_id: str, text: str, now: datetime | None = None) -> tuple[str, bool]:
        stamp = now or utcnow()
        with self.locks.hold(session_id):
            session = self._load_active(session_id)
            self.machine.record_message(session, "user", text, now=stamp)

            known_items = [item.name for order in session.orders for item in order.items]
            intent = self.language.detect_intent(text)
            entities = self.language.extract_entities(text, intent, known_items)
            sentiment = self.language.analyze_sentiment(text)
            logger.info(
                "message_classified session_id=%s intent=%s confidence=%s sentiment=%.2f",
                session_id,
                intent.type.value,
                intent.confidence,
                sentiment.score,
            )

            if intent.confidence < self.config.intent_confidence_floor:
                reply = self._handle_general(session, intent, entities, stamp)
            else:
                handler = self._handlers.get(intent.type, self._handle_general)
                reply = handler(session, intent, entities, stamp)

            reply = self._check_auto_escalation(session, reply, sentiment.score, stamp)
            self.machine.record_message(session, "assistant", reply, now=stamp)
            self.store.save(session)
            return reply, session.escalated

    def _load_active(self, session_id: str) -> Session:
        session = self.store.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status != SessionStatus.ACTIVE:
            raise SessionClosedError(session_id)
        return session

    # ── intent handlers ──

    def _handle_complaint(
        self, session: Session, intent: Intent, entities: ExtractedEntities, now: datetime
    ) -> str:
        order = session.find_order(entities.order_id)
        if order is None:
            return no_order_message()

        verification = self.verifier.verify(intent.type, order, entities, session.customer, now)
        if not verification.verified:
            if verification.reason == REASON_RISK:
                self._escalate(session, "verification_risk", now)
            return verification_failed_message(verification.reason)

        update: dict = {}
        if verification.lateness_minutes is not None:
            update["lateness_minutes"] = verification.lateness_minutes
        if verification.valid_missing_items:
            update["missing_items"] = verification.valid_missing_items
        if update:
            entities = entities.model_copy(update=update)

        solution = self.solutions.decide(intent.type, order, session.customer, entities, now)
        return self._resolve(session, order, solution, entities, now)

    def _handle_refund_request(
        self, session: Session, intent: Intent, entities: ExtractedEntities, now: datetime
    ) -> str:
        order = session.find_order(entities.order_id)
        if order is None:
            return no_order_message()

        eligibility = self.verifier.check_refund_eligibility(order, session.customer, now)
        if not eligibility.eligible:
            logger.info("refund_rejected session_id=%s order_id=%s reason=%s", session.id, order.id, eligibility.reason)
            return refund_rejected_message(eligibility.reason)

        solution = self.solutions.decide(IssueType.REFUND_REQUEST, order, session.customer, entities, now)
        return self._resolve(session, order, solution, entities, now)

    def _handle_escalation_request(
        self, session: Session, intent: Intent, entities: ExtractedEntities, now: datetime
    ) -> str:
        ticket = self._escalate(session, "customer_request", now)
        return escalation_message(session.customer, ticket.ticket_id)

    def _handle_order_status(
        self, session: Session, intent: Intent, entities: ExtractedEntities, now: datetime
    ) -> str:
        order = session.find_order(entities.order_id)
        if order is None:
            return no_order_message()
        return order_status_message(order)

    def _handle_general(
        self, session: Session, intent: Intent, entities: ExtractedEntities, now: datetime
    ) -> str:
        return general_message(intent, session.customer, self.config.intent_confidence_floor)

    # ── compensation ──

    def _resolve(
        self,
        session: Session,
        order: OrderDetails,
        solution: Solution,
        entities: ExtractedEntities,
        now: datetime,
    ) -> str:
        result = self._apply(session, order, solution, entities)
        self.machine.record_resolution(
            session,
            Resolution(
                type=solution.type,
                order_id=order.id,
                amount=solution.amount,
                timestamp=now,
                success=result.success,
            ),
        )
        logger.info(
            "resolution_recorded session_id=%s order_id=%s type=%s amount=%s success=%s",
            session.id,
            order.id,
            solution.type.value,
            solution.amount,
            result.success,
        )

        if not result.success:
            self._escalate(session, "resolution_failed", now)
        elif solution.type == SolutionType.REFUND:
            order.refunded = True
        return resolution_message(solution, result.success, order)

    def _apply(
        self,
        session: Session,
        order: OrderDetails,
        solution: Solution,
        entities: ExtractedEntities,
    ) -> GatewayResult:
        if solution.type == SolutionType.REFUND:
            action = partial(self.gateway.apply_refund, order.id, order.payment_id, solution.amount, solution.reason)
        elif solution.type == SolutionType.CREDIT:
            action = partial(self.gateway.apply_credit, session.customer_id, solution.amount, solution.reason)
        else:
            items = entities.wrong_items or entities.missing_items or [item.name for item in order.items]
            action = partial(self.gateway.apply_redelivery, order.id, items)

        outcome = run_fail_open(
            f"apply_{solution.type.value.lower()}",
            action,
            lambda: GatewayResult(success=False, error="gateway_error"),
        )
        return outcome.value

    # ── escalation ──

    def _escalate(self, session: Session, reason: str, now: datetime) -> EscalationTicket:
        self.machine.escalate(session)
        return self.store.save_ticket(self.escalation.build_ticket(session, reason, now))

    def _check_auto_escalation(self, session: Session, reply: str, sentiment_score: float, now: datetime) -> str:
        if session.escalated:
            return reply

        reason = None
        if self.escalation.is_sentiment_critical(sentiment_score):
            reason = "negative_sentiment"
        elif self.escalation.evaluate(session).auto_escalate:
            reason = "auto_escalation"
        if reason is None:
            return reply

        ticket = self._escalate(session, reason, now)
        return f"{reply} {auto_escalation_note(ticket.ticket_id)}"
