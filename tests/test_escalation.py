from services.decision_server.app.escalation import EscalationPolicy, contains_frustration
from services.decision_server.app.schemas import MembershipTier, Message, Priority
from tests.factories import NOW, make_customer, make_order, make_session


def test_two_resolutions_trigger_auto_escalation():
    policy = EscalationPolicy()
    assert policy.should_auto_escalate(make_session(resolutions=2)) is True
    assert policy.should_auto_escalate(make_session(resolutions=1)) is False


def test_two_frustrated_messages_trigger_auto_escalation():
    policy = EscalationPolicy()
    session = make_session(user_messages=["This is ridiculous", "You are useless"])
    assert policy.should_auto_escalate(session) is True


def test_one_frustrated_message_is_not_enough():
    policy = EscalationPolicy()
    session = make_session(user_messages=["This is ridiculous", "Where is my order?"])
    assert policy.should_auto_escalate(session) is False


def test_frustration_in_assistant_messages_is_ignored():
    policy = EscalationPolicy()
    session = make_session(user_messages=["This is unacceptable"])
    session.messages.append(Message(role="assistant", content="Sorry this was unacceptable", timestamp=NOW))
    assert policy.frustration_count(session) == 1


def test_pro_plus_always_auto_escalates():
    policy = EscalationPolicy()
    assert policy.should_auto_escalate(make_session(customer=make_customer(MembershipTier.PRO_PLUS))) is True
    assert policy.should_auto_escalate(make_session(customer=make_customer(MembershipTier.PRO))) is False


def test_high_value_order_auto_escalates():
    policy = EscalationPolicy()
    assert policy.should_auto_escalate(make_session(orders=[make_order(total="1000.01")])) is True
    assert policy.should_auto_escalate(make_session(orders=[make_order(total="1000")])) is False


def test_contains_frustration_is_case_insensitive():
    assert contains_frustration("ARE YOU A BOT?")
    assert not contains_frustration("thanks for the help")


def test_priority_rules():
    policy = EscalationPolicy()
    assert policy.determine_priority(make_session()) == Priority.MEDIUM
    assert policy.determine_priority(make_session(customer=make_customer(MembershipTier.PRO))) == Priority.HIGH
    assert policy.determine_priority(make_session(customer=make_customer(complaint_frequency=4))) == Priority.HIGH
    assert policy.determine_priority(make_session(orders=[make_order(total="1200")])) == Priority.HIGH
    assert policy.determine_priority(make_session(user_messages=["hello"] * 11)) == Priority.HIGH
    assert policy.determine_priority(make_session(user_messages=["hello"] * 10)) == Priority.MEDIUM


def test_evaluate_combines_priority_and_trigger():
    decision = EscalationPolicy().evaluate(make_session(resolutions=2))
    assert decision.auto_escalate is True
    assert decision.priority == Priority.MEDIUM


def test_evaluate_fault_does_not_escalate(monkeypatch):
    policy = EscalationPolicy()

    def broken(_session):
        raise KeyError("tier")

    monkeypatch.setattr(policy, "should_auto_escalate", broken)
    decision = policy.evaluate(make_session(resolutions=3))
    assert decision.auto_escalate is False
    assert decision.priority == Priority.MEDIUM


def test_sentiment_threshold():
    policy = EscalationPolicy()
    assert policy.is_sentiment_critical(-0.6) is True
    assert policy.is_sentiment_critical(-0.5) is False


def test_agent_notes_summarise_session():
    session = make_session(user_messages=["My pizza is missing", "and it was late"], resolutions=1)
    notes = EscalationPolicy().create_agent_notes(session)
    assert "Customer: Asha Rao (REGULAR)" in notes
    assert "Latest Order: #ORD-1 from Pizza Hut" in notes
    assert "- CREDIT: 10.00 for Order #ORD-0 (ok)" in notes
    assert "- Missing items" in notes
    assert "- Late delivery" in notes


def test_agent_notes_without_orders():
    notes = EscalationPolicy().create_agent_notes(make_session(orders=[]))
    assert "No order details available" in notes
    assert "No specific issues detected" in notes


def test_ticket_id_is_stable_per_session():
    policy = EscalationPolicy()
    session = make_session()
    first = policy.build_ticket(session, "customer_request", NOW)
    second = policy.build_ticket(session, "auto_escalation", NOW)
    assert first.ticket_id == second.ticket_id
    assert first.ticket_id.startswith("ESC-")
    assert first.session_id == session.id
    assert first.priority == Priority.MEDIUM
