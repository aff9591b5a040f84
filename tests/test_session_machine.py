from datetime import timedelta
from decimal import Decimal

import pytest

from services.decision_server.app.errors import SessionClosedError
from services.decision_server.app.schemas import Resolution, SessionStatus, SolutionType
from services.decision_server.app.session_machine import SessionStateMachine
from tests.factories import NOW, make_customer, make_order


@pytest.fixture()
def machine():
    return SessionStateMachine()


def test_start_creates_active_session(machine):
    session = machine.start(make_customer(), [make_order()], now=NOW)
    assert session.id.startswith("SES-")
    assert session.status == SessionStatus.ACTIVE
    assert session.escalated is False
    assert session.order_ids == ["ORD-1"]
    assert session.created_at == NOW


def test_session_ids_are_unique(machine):
    ids = {machine.start(make_customer(), []).id for _ in range(50)}
    assert len(ids) == 50


def test_messages_append_in_order(machine):
    session = machine.start(make_customer(), [], now=NOW)
    machine.record_message(session, "user", "first", now=NOW)
    later = NOW + timedelta(seconds=5)
    machine.record_message(session, "assistant", "second", now=later)
    assert [m.content for m in session.messages] == ["first", "second"]
    assert session.last_activity_at == later


def test_escalate_is_one_way_and_idempotent(machine):
    session = machine.start(make_customer(), [])
    assert machine.escalate(session) is True
    assert machine.escalate(session) is False
    assert session.escalated is True


def test_ended_session_rejects_every_mutation(machine):
    session = machine.start(make_customer(), [], now=NOW)
    machine.end(session, now=NOW)
    assert session.status == SessionStatus.ENDED
    assert machine.valid_transitions(SessionStatus.ENDED) == set()

    with pytest.raises(SessionClosedError):
        machine.record_message(session, "user", "hello again")
    with pytest.raises(SessionClosedError):
        machine.escalate(session)
    with pytest.raises(SessionClosedError):
        machine.end(session)
    with pytest.raises(SessionClosedError):
        machine.record_resolution(
            session,
            Resolution(type=SolutionType.CREDIT, order_id="ORD-1", amount=Decimal("5"), timestamp=NOW, success=True),
        )
    assert session.messages == []


def test_record_resolution_appends(machine):
    session = machine.start(make_customer(), [], now=NOW)
    resolution = Resolution(
        type=SolutionType.REFUND, order_id="ORD-1", amount=Decimal("120.00"), timestamp=NOW, success=True
    )
    machine.record_resolution(session, resolution)
    assert session.resolutions == [resolution]
