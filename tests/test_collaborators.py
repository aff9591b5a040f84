from decimal import Decimal

from services.decision_server.app.directory import DemoDirectory, HttpDirectory, build_directory
from services.decision_server.app.payments import DemoPaymentGateway, HttpPaymentGateway, build_gateway
from services.decision_server.app.schemas import MembershipTier
from tests.factories import NOW

UNREACHABLE = "http://127.0.0.1:9"


def test_demo_directory_is_deterministic():
    directory = DemoDirectory()
    assert directory.get_customer("CUST-1000") == directory.get_customer("CUST-1000")
    customer = directory.get_customer("CUST-1000")
    assert customer.membership_tier == MembershipTier.PRO
    assert customer.fraud_risk_score == 0.0


def test_demo_delivered_order():
    order = DemoDirectory().get_order("ORD-1004", now=NOW)
    assert order.status == "DELIVERED"
    assert order.restaurant_name == "Subway"
    assert order.total_amount == Decimal("654.00")
    assert (order.delivered_at - order.estimated_delivery_time).total_seconds() == 25 * 60


def test_demo_order_in_transit_has_no_delivery_time():
    order = DemoDirectory().get_order("ORD-1003", now=NOW)
    assert order.status == "IN_TRANSIT"
    assert order.delivered_at is None


def test_http_directory_degrades_to_placeholders():
    directory = HttpDirectory(UNREACHABLE, timeout_s=0.5)
    customer = directory.get_customer("CUST-1")
    order = directory.get_order("ORD-1")
    assert customer.id == "CUST-1"
    assert customer.name == "Customer"
    assert order.id == "ORD-1"
    assert order.items == []
    assert order.status == "UNKNOWN"


def test_http_gateway_reports_failure():
    result = HttpPaymentGateway(UNREACHABLE, timeout_s=0.5).apply_credit("CUST-1", Decimal("10.00"), "test")
    assert result.success is False
    assert result.error


def test_demo_gateway_succeeds():
    result = DemoPaymentGateway().apply_refund("ORD-1", "pay_ORD-1", Decimal("10.00"), "test")
    assert result.success is True
    assert result.transaction_id.startswith("REF-")


def test_builders_follow_demo_mode():
    assert isinstance(build_directory(True, UNREACHABLE, 1.0), DemoDirectory)
    assert isinstance(build_directory(False, UNREACHABLE, 1.0), HttpDirectory)
    assert isinstance(build_gateway(True, UNREACHABLE, 1.0), DemoPaymentGateway)
    assert isinstance(build_gateway(False, UNREACHABLE, 1.0), HttpPaymentGateway)


def test_http_directory_reads_naive_timestamps_as_utc(monkeypatch):
    directory = HttpDirectory(UNREACHABLE, timeout_s=0.5)
    payload = {
        "id": "ORD-7",
        "restaurant_id": "rest_7",
        "restaurant_name": "Subway",
        "total_amount": "300.00",
        "ordered_at": "2025-06-01T02:00:00",
        "estimated_delivery_time": "2025-06-01T02:40:00",
        "delivered_at": "2025-06-01T03:00:00",
        "restaurant_close_time": "2025-06-01T23:00:00",
        "status": "DELIVERED",
    }
    monkeypatch.setattr(directory, "_get", lambda path: payload)

    order = directory.get_order("ORD-7")

    assert order.delivered_at.tzinfo is not None
    assert (NOW - order.delivered_at).total_seconds() == 600 * 60
