from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

CENTS = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps from upstream services are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class MembershipTier(str, Enum):
    REGULAR = "REGULAR"
    PRO = "PRO"
    PRO_PLUS = "PRO_PLUS"

    @property
    def is_premium(self) -> bool:
        return self in {MembershipTier.PRO, MembershipTier.PRO_PLUS}


class IssueType(str, Enum):
    WRONG_ORDER = "WRONG_ORDER"
    MISSING_ITEM = "MISSING_ITEM"
    LATE_DELIVERY = "LATE_DELIVERY"
    REFUND_REQUEST = "REFUND_REQUEST"
    ESCALATION_REQUEST = "ESCALATION_REQUEST"
    ORDER_STATUS = "ORDER_STATUS"
    GENERAL_QUERY = "GENERAL_QUERY"


class SolutionType(str, Enum):
    REFUND = "REFUND"
    REDELIVERY = "REDELIVERY"
    CREDIT = "CREDIT"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


OrderStatus = Literal[
    "CONFIRMED",
    "PREPARING",
    "READY_FOR_PICKUP",
    "IN_TRANSIT",
    "DELIVERED",
    "CANCELLED",
    "UNKNOWN",
]


class CustomerInfo(BaseModel):
    id: str
    name: str
    membership_tier: MembershipTier = MembershipTier.REGULAR
    fraud_risk_score: float = Field(default=0.0, ge=0.0, le=1.0)
    complaint_frequency: int = Field(default=0, ge=0)
    email: str | None = None

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else "there"


class OrderItem(BaseModel):
    name: str
    unit_price: Decimal = Field(ge=Decimal("0"))
    quantity: int = Field(default=1, ge=1)


class OrderDetails(BaseModel):
    id: str
    restaurant_id: str
    restaurant_name: str
    items: list[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Field(ge=Decimal("0"))
    ordered_at: UtcDatetime
    estimated_delivery_time: UtcDatetime
    delivered_at: UtcDatetime | None = None
    restaurant_close_time: UtcDatetime
    problem_flag: bool = False
    refunded: bool = False
    status: OrderStatus = "UNKNOWN"
    delivery_fee: Decimal | None = None
    payment_id: str | None = None


class Intent(BaseModel):
    type: IssueType
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractedEntities(BaseModel):
    order_id: str | None = None
    wrong_items: list[str] = Field(default_factory=list)
    missing_items: list[str] = Field(default_factory=list)
    reported_issues: list[str] = Field(default_factory=list)
    free_text_reason: str | None = None
    lateness_minutes: float | None = None


class VerificationResult(BaseModel):
    verified: bool
    reason: str
    lateness_minutes: float | None = None
    valid_missing_items: list[str] | None = None


class RefundEligibility(BaseModel):
    eligible: bool
    reason: str
    amount: Decimal = Decimal("0.00")
    percentage: int = 0


class Solution(BaseModel):
    type: SolutionType
    amount: Decimal = Field(ge=Decimal("0"))
    reason: str
    bonus_amount: Decimal | None = None
    estimated_delivery_minutes: int | None = None


class Resolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SolutionType
    order_id: str
    amount: Decimal
    timestamp: datetime
    success: bool


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime


class EscalationDecision(BaseModel):
    priority: Priority
    auto_escalate: bool


class EscalationTicket(BaseModel):
    ticket_id: str
    session_id: str
    priority: Priority
    reason: str
    agent_notes: str
    created_at: datetime


class Session(BaseModel):
    id: str
    customer_id: str
    customer: CustomerInfo
    order_ids: list[str] = Field(default_factory=list)
    orders: list[OrderDetails] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    escalated: bool = False
    resolutions: list[Resolution] = Field(default_factory=list)
    created_at: datetime
    last_activity_at: datetime

    def find_order(self, order_id: str | None) -> OrderDetails | None:
        """The named order, or the first one when the message names none."""
        if order_id is None:
            return self.orders[0] if self.orders else None
        wanted = {order_id.upper(), f"ORD-{order_id}".upper()}
        for order in self.orders:
            if order.id.upper() in wanted:
                return order
        return None


class StartConversationRequest(BaseModel):
    customer_id: str = Field(min_length=1)
    order_ids: list[str] = Field(default_factory=list)


class StartConversationResponse(BaseModel):
    session_id: str
    message: str


class PostMessageRequest(BaseModel):
    session_id: str
    message: str = Field(min_length=1, max_length=4000)


class PostMessageResponse(BaseModel):
    response: str
    escalated: bool


class SessionRequest(BaseModel):
    session_id: str


class EscalateResponse(BaseModel):
    escalated: bool
    priority: Priority
    ticket_id: str


class EndConversationResponse(BaseModel):
    success: bool = True


class SessionView(BaseModel):
    session_id: str
    customer_id: str
    status: SessionStatus
    escalated: bool
    messages: list[Message]
    resolutions: list[Resolution]
