"""Session persistence.

An in-memory store for demos and tests and a SQL store whose saves are
append-only, plus the per-session lock registry.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Protocol

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from services.decision_server.app.config import Settings
from services.decision_server.app.errors import SessionClosedError
from services.decision_server.app.models import Base, ChatMessage, ChatSession, EscalationRecord, ResolutionRecord
from services.decision_server.app.schemas import (
    CustomerInfo,
    EscalationTicket,
    Message,
    OrderDetails,
    Priority,
    Resolution,
    Session,
    SessionStatus,
    SolutionType,
)


def _to_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore(Protocol):
    """Backing store for conversation sessions.

    Lifecycle: a session is saved when it starts and after every turn. When it
    ends it is saved once more, then ``discard`` is called: volatile stores
    drop it, durable stores keep it as a read-only record.
    """

    def load(self, session_id: str) -> Session | None: ...

    def save(self, session: Session) -> None: ...

    def discard(self, session_id: str) -> None: ...

    def save_ticket(self, ticket: EscalationTicket) -> EscalationTicket: ...


class InMemorySessionStore:
    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._tickets: dict[str, EscalationTicket] = {}
        self._guard = threading.Lock()

    def load(self, session_id: str) -> Session | None:
        with self._guard:
            stored = self._sessions.get(session_id)
            return stored.model_copy(deep=True) if stored else None

    def save(self, session: Session) -> None:
        with self._guard:
            stored = self._sessions.get(session.id)
            if stored is not None and stored.status == SessionStatus.ENDED:
                raise SessionClosedError(session.id)
            copy = session.model_copy(deep=True)
            if stored is not None:
                copy.escalated = copy.escalated or stored.escalated
            self._sessions[session.id] = copy

    def discard(self, session_id: str) -> None:
        with self._guard:
            self._sessions.pop(session_id, None)

    def save_ticket(self, ticket: EscalationTicket) -> EscalationTicket:
        with self._guard:
            return self._tickets.setdefault(ticket.ticket_id, ticket)

    def get_ticket(self, ticket_id: str) -> EscalationTicket | None:
        with self._guard:
            return self._tickets.get(ticket_id)


class SqlSessionStore:
    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def load(self, session_id: str) -> Session | None:
        with self.session_factory() as db:
            row = db.get(ChatSession, session_id)
            if row is None:
                return None
            messages = db.scalars(
                select(ChatMessage).where(ChatMessage.session_id == session_id).order_by(ChatMessage.position)
            ).all()
            resolutions = db.scalars(
                select(ResolutionRecord)
                .where(ResolutionRecord.session_id == session_id)
                .order_by(ResolutionRecord.position)
            ).all()
            return Session(
                id=row.session_id,
                customer_id=row.customer_id,
                customer=CustomerInfo.model_validate(row.customer_json),
                order_ids=list(row.order_ids),
                orders=[OrderDetails.model_validate(o) for o in row.orders_json],
                messages=[
                    Message(role=m.role, content=m.content, timestamp=_to_aware(m.created_at)) for m in messages
                ],
                status=SessionStatus(row.status),
                escalated=row.escalated,
                resolutions=[
                    Resolution(
                        type=SolutionType(r.resolution_type),
                        order_id=r.order_id,
                        amount=r.amount,
                        timestamp=_to_aware(r.created_at),
                        success=r.success,
                    )
                    for r in resolutions
                ],
                created_at=_to_aware(row.created_at),
                last_activity_at=_to_aware(row.last_activity_at),
            )

    def save(self, session: Session) -> None:
        with self.session_factory() as db:
            row = db.get(ChatSession, session.id)
            if row is None:
                row = ChatSession(
                    session_id=session.id,
                    customer_id=session.customer_id,
                    customer_json=session.customer.model_dump(mode="json"),
                    order_ids=list(session.order_ids),
                    orders_json=[],
                    status=session.status.value,
                    escalated=session.escalated,
                    created_at=_to_naive(session.created_at),
                    last_activity_at=_to_naive(session.last_activity_at),
                )
                db.add(row)
            elif row.status == SessionStatus.ENDED.value:
                raise SessionClosedError(session.id)

            persisted_messages = db.scalar(
                select(func.count()).select_from(ChatMessage).where(ChatMessage.session_id == session.id)
            ) or 0
            for position, message in enumerate(session.messages[persisted_messages:], start=persisted_messages):
                db.add(
                    ChatMessage(
                        session_id=session.id,
                        position=position,
                        role=message.role,
                        content=message.content,
                        created_at=_to_naive(message.timestamp),
                    )
                )

            persisted_resolutions = db.scalar(
                select(func.count()).select_from(ResolutionRecord).where(ResolutionRecord.session_id == session.id)
            ) or 0
            for position, resolution in enumerate(
                session.resolutions[persisted_resolutions:], start=persisted_resolutions
            ):
                db.add(
                    ResolutionRecord(
                        session_id=session.id,
                        position=position,
                        resolution_type=resolution.type.value,
                        order_id=resolution.order_id,
                        amount=resolution.amount,
                        success=resolution.success,
                        created_at=_to_naive(resolution.timestamp),
                    )
                )

            row.orders_json = [o.model_dump(mode="json") for o in session.orders]
            row.status = session.status.value
            row.escalated = bool(row.escalated) or session.escalated
            row.last_activity_at = _to_naive(session.last_activity_at)
            db.commit()

    def discard(self, session_id: str) -> None:
        # ended sessions stay on disk as read-only records
        return None

    def save_ticket(self, ticket: EscalationTicket) -> EscalationTicket:
        with self.session_factory() as db:
            existing = db.get(EscalationRecord, ticket.ticket_id)
            if existing:
                return EscalationTicket(
                    ticket_id=existing.ticket_id,
                    session_id=existing.session_id,
                    priority=Priority(existing.priority),
                    reason=existing.reason,
                    agent_notes=existing.agent_notes,
                    created_at=_to_aware(existing.created_at),
                )
            db.add(
                EscalationRecord(
                    ticket_id=ticket.ticket_id,
                    session_id=ticket.session_id,
                    priority=ticket.priority.value,
                    reason=ticket.reason,
                    agent_notes=ticket.agent_notes,
                    created_at=_to_naive(ticket.created_at),
                )
            )
            db.commit()
            return ticket


class SessionLocks:
    """One lock per session id; different sessions never wait on each other.

    Entries are weak: a lock stays registered only while some request holds
    a reference to it, so unknown or abandoned session ids leave nothing behind.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self.lock_for(session_id)
        with lock:
            yield

    def forget(self, session_id: str) -> None:
        with self._guard:
            self._locks.pop(session_id, None)


def build_store(config: Settings) -> SessionStore:
    if config.session_backend == "sql":
        return SqlSessionStore(config.database_url)
    return InMemorySessionStore()
