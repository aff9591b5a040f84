"""Conversation lifecycle.

A session moves from ``active`` to ``ended`` and never back. ``escalated``
is a flag on top of the active state: it can only be raised, and only while
the session is active. Messages and resolutions are only ever appended.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import uuid4

from services.decision_server.app.errors import SessionClosedError
from services.decision_server.app.schemas import (
    CustomerInfo,
    Message,
    OrderDetails,
    Resolution,
    Session,
    SessionStatus,
    utcnow,
)

logger = logging.getLogger("decision_server.session_machine")

TRANSITIONS = {
    SessionStatus.ACTIVE: {SessionStatus.ENDED},
    SessionStatus.ENDED: set(),
}


def _require_active(session: Session) -> None:
    if session.status != SessionStatus.ACTIVE:
        raise SessionClosedError(session.id)


class SessionStateMachine:
    def valid_transitions(self, status: SessionStatus) -> set[SessionStatus]:
        return TRANSITIONS.get(status, set())

    def start(
        self,
        customer: CustomerInfo,
        orders: list[OrderDetails],
        order_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> Session:
        created = now or utcnow()
        session = Session(
            id=f"SES-{uuid4().hex[:12]}",
            customer_id=customer.id,
            customer=customer,
            order_ids=list(order_ids if order_ids is not None else [o.id for o in orders]),
            orders=list(orders),
            created_at=created,
            last_activity_at=created,
        )
        logger.info("session_started session_id=%s customer_id=%s", session.id, customer.id)
        return session

    def record_message(
        self,
        session: Session,
        role: str,
        content: str,
        now: datetime | None = None,
    ) -> Message:
        _require_active(session)
        stamp = now or utcnow()
        message = Message(role=role, content=content, timestamp=stamp)
        session.messages.append(message)
        session.last_activity_at = stamp
        return message

    def record_resolution(self, session: Session, resolution: Resolution) -> Resolution:
        _require_active(session)
        session.resolutions.append(resolution)
        session.last_activity_at = max(session.last_activity_at, resolution.timestamp)
        return resolution

    def escalate(self, session: Session) -> bool:
        """Raise the escalated flag. Returns True only on the first call."""
        _require_active(session)
        if session.escalated:
            return False
        session.escalated = True
        logger.info("session_escalated session_id=%s", session.id)
        return True

    def end(self, session: Session, now: datetime | None = None) -> Session:
        _require_active(session)
        if SessionStatus.ENDED not in self.valid_transitions(session.status):
            raise SessionClosedError(session.id)
        session.status = SessionStatus.ENDED
        ended_at = now or utcnow()
        logger.info(
            "session_ended session_id=%s duration_s=%s message_count=%s resolutions=%s escalated=%s",
            session.id,
            int((ended_at - session.created_at).total_seconds()),
            len(session.messages),
            len(session.resolutions),
            session.escalated,
        )
        return session
