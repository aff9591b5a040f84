"""Customer-facing text for decisions. Formatting only, no policy."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from services.decision_server.app.schemas import (
    CustomerInfo,
    Intent,
    IssueType,
    OrderDetails,
    Solution,
    SolutionType,
    utcnow,
)
from services.decision_server.app.verification import REASON_ITEMS_NOT_IN_ORDER, REASON_RISK, REASON_TOO_LATE

ASSISTANT_INTRO = "I'm your food delivery support assistant."


def format_currency(amount: Decimal) -> str:
    return f"₹{amount:.2f}"


def format_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    period = "PM" if value.hour >= 12 else "AM"
    return f"{hour}:{value.minute:02d} {period}"


def _greeting(now: datetime) -> str:
    if now.hour < 12:
        return "Good morning"
    if now.hour < 17:
        return "Good afternoon"
    return "Good evening"


def welcome_message(customer: CustomerInfo, orders: list[OrderDetails], now: datetime | None = None) -> str:
    stamp = now or utcnow()
    opening = f"{_greeting(stamp)}, {customer.first_name}! {ASSISTANT_INTRO}"
    if not orders:
        return f"{opening} How can I help you today?"

    latest = orders[0]
    if latest.status == "DELIVERED" and latest.delivered_at is not None:
        minutes = round((stamp - latest.delivered_at).total_seconds() / 60)
        if minutes < 30:
            return (
                f"{opening} I see your order from {latest.restaurant_name} was delivered about "
                f"{minutes} minutes ago. How can I help you with this order?"
            )
        return f"{opening} I see you recently received an order from {latest.restaurant_name}. How can I help you today?"
    if latest.status == "IN_TRANSIT":
        return (
            f"{opening} I see your order from {latest.restaurant_name} is currently on the way. "
            "How can I help you with this order?"
        )
    if latest.status == "PREPARING":
        return (
            f"{opening} I see your order from {latest.restaurant_name} is currently being prepared. "
            "How can I help you today?"
        )
    return f"{opening} How can I help you today?"


def resolution_message(solution: Solution, success: bool, order: OrderDetails) -> str:
    if not success:
        return (
            f"I'm very sorry, but I ran into a problem while processing the {solution.type.value.lower()} "
            "for your order. I'm passing this to our support team and someone will contact you within "
            "the next 2 hours. Is there anything else I can help you with?"
        )

    amount = format_currency(solution.amount)
    if solution.type == SolutionType.REFUND:
        return (
            f"I've processed a refund of {amount} for your order from {order.restaurant_name}. "
            "It should reach your original payment method within 3-5 business days. "
            "Is there anything else I can help you with today?"
        )
    if solution.type == SolutionType.REDELIVERY:
        return (
            f"I've arranged a redelivery of the correct items from {order.restaurant_name}. "
            f"Your food should arrive in approximately {solution.estimated_delivery_minutes} minutes. "
            "Is there anything else you need while you wait?"
        )
    bonus = ""
    if solution.bonus_amount:
        bonus = f" (including a bonus of {format_currency(solution.bonus_amount)} for the inconvenience)"
    return (
        f"I've added {amount} in credits to your account{bonus}. They will be applied to your next "
        "order automatically and are valid for 3 months. Is there anything else I can help you with today?"
    )


def verification_failed_message(reason: str) -> str:
    if reason == REASON_TOO_LATE:
        return (
            "I'm sorry, but I can't process this request because it has been too long since the order "
            "was delivered. Issues with missing or wrong items need to be reported within 60 minutes of "
            "delivery. Is there anything else I can help you with today?"
        )
    if reason == REASON_RISK:
        return (
            "I'm unable to process this request automatically right now. I'm passing it to our support "
            "team for review and someone will contact you shortly."
        )
    if reason == REASON_ITEMS_NOT_IN_ORDER:
        return (
            "I've checked your order and I don't see the items you mentioned. Could you confirm which "
            "items from your order are missing?"
        )
    if "minutes late" in reason or "on time" in reason:
        return (
            "I checked the delivery times and your order arrived within our expected delivery window, "
            "so I can't offer compensation for a delay. Is there anything else I can help you with?"
        )
    return (
        "I'm unable to verify this issue automatically. Could you share more details about the "
        "problem with your order?"
    )


def refund_rejected_message(reason: str) -> str:
    if reason == "Order has already been refunded":
        return (
            "A refund for this order has already been processed. It can take 3-5 business days to appear "
            "in your account. If you haven't received it after 5 business days, please let me know."
        )
    if reason.startswith("Order is more than"):
        return (
            "I'm sorry, but this order is outside our refund eligibility period. If you'd like to discuss "
            "it further, I can connect you with our support team."
        )
    return (
        "I'm unable to process your refund request automatically right now. I'm passing it to our "
        "support team for review."
    )


def order_status_message(order: OrderDetails) -> str:
    head = f"Your order #{order.id} from {order.restaurant_name}"
    eta = format_time(order.estimated_delivery_time)
    if order.status == "CONFIRMED":
        return f"{head} has been confirmed. The estimated delivery time is {eta}."
    if order.status == "PREPARING":
        return f"{head} is being prepared by the restaurant. The estimated delivery time is {eta}."
    if order.status == "READY_FOR_PICKUP":
        return f"{head} is ready and waiting for a delivery partner. The estimated delivery time is {eta}."
    if order.status == "IN_TRANSIT":
        return f"{head} is on the way and should arrive by {eta}."
    if order.status == "DELIVERED" and order.delivered_at is not None:
        return (
            f"{head} was delivered at {format_time(order.delivered_at)}. If anything is wrong with it, "
            "let me know and I'll be happy to help."
        )
    if order.status == "CANCELLED":
        return f"{head} was cancelled."
    return f"I'm checking the status of your order #{order.id} from {order.restaurant_name}."


def no_order_message() -> str:
    return (
        "I don't see any recent orders associated with your account. Could you share the order number? "
        "You can find it in your order confirmation or order history."
    )


def escalation_message(customer: CustomerInfo, ticket_id: str) -> str:
    return (
        f"I understand, {customer.first_name}. I'm escalating your case to our support team now. "
        f"Your ticket ID is {ticket_id}. A support specialist will join this conversation shortly and "
        "will have the full conversation history, so you won't need to repeat yourself."
    )


def auto_escalation_note(ticket_id: str) -> str:
    return f"I've also asked a support specialist to review this conversation (ticket {ticket_id})."


def general_message(intent: Intent, customer: CustomerInfo, confidence_floor: float) -> str:
    if intent.confidence < confidence_floor:
        return (
            f"I'm not quite sure I understand, {customer.first_name}. Could you share a few more details? "
            "If something went wrong with an order, please tell me what happened."
        )
    if intent.type == IssueType.GENERAL_QUERY:
        return (
            f"Thanks for reaching out, {customer.first_name}. I can help with wrong or missing items, late "
            "deliveries, refunds and order status. What can I do for you?"
        )
    return "Could you share a few more details so I can help you better?"
