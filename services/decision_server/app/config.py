from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    database_url: str = Field(
        default="sqlite+pysqlite:///./support_sessions.db",
        alias="DATABASE_URL",
    )
    session_backend: str = Field(default="memory", alias="SESSION_BACKEND")
    demo_mode: bool = Field(default=True, alias="DEMO_MODE")
    order_service_url: str = Field(default="http://localhost:8101", alias="ORDER_SERVICE_URL")
    payment_gateway_url: str = Field(default="http://localhost:8102", alias="PAYMENT_GATEWAY_URL")
    collaborator_timeout_s: float = Field(default=10.0, alias="COLLABORATOR_TIMEOUT_S")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # verification windows
    wrong_order_window_minutes: int = Field(default=60, alias="WRONG_ORDER_WINDOW_MINUTES")
    missing_item_window_minutes: int = Field(default=60, alias="MISSING_ITEM_WINDOW_MINUTES")
    late_delivery_window_hours: int = Field(default=24, alias="LATE_DELIVERY_WINDOW_HOURS")

    # thresholds
    fraud_risk_threshold: float = Field(default=0.7, alias="FRAUD_RISK_THRESHOLD")
    complaint_frequency_threshold: int = Field(default=5, alias="COMPLAINT_FREQUENCY_THRESHOLD")
    acceptable_lateness_minutes: int = Field(default=10, alias="ACCEPTABLE_LATENESS_MINUTES")
    redelivery_window_minutes: int = Field(default=120, alias="REDELIVERY_WINDOW_MINUTES")
    refund_eligibility_days: int = Field(default=7, alias="REFUND_ELIGIBILITY_DAYS")
    max_late_fee: Decimal = Field(default=Decimal("200"), alias="MAX_LATE_FEE")
    max_bonus_amount: Decimal = Field(default=Decimal("100"), alias="MAX_BONUS_AMOUNT")
    high_value_order: Decimal = Field(default=Decimal("1000"), alias="HIGH_VALUE_ORDER")
    extreme_lateness_minutes: int = Field(default=90, alias="EXTREME_LATENESS_MINUTES")

    # compensation rates
    slightly_late_rate: Decimal = Field(default=Decimal("0.1"), alias="SLIGHTLY_LATE_RATE")
    moderately_late_rate: Decimal = Field(default=Decimal("0.2"), alias="MODERATELY_LATE_RATE")
    very_late_rate: Decimal = Field(default=Decimal("0.3"), alias="VERY_LATE_RATE")
    premium_bonus_rate: Decimal = Field(default=Decimal("0.2"), alias="PREMIUM_BONUS_RATE")
    unmatched_items_rate: Decimal = Field(default=Decimal("0.3"), alias="UNMATCHED_ITEMS_RATE")
    fallback_credit_amount: Decimal = Field(default=Decimal("50"), alias="FALLBACK_CREDIT_AMOUNT")
    redelivery_estimate_minutes: int = Field(default=35, alias="REDELIVERY_ESTIMATE_MINUTES")

    # escalation
    escalation_message_count: int = Field(default=10, alias="ESCALATION_MESSAGE_COUNT")
    escalation_sentiment: float = Field(default=-0.5, alias="ESCALATION_SENTIMENT")
    priority_complaint_frequency: int = Field(default=3, alias="PRIORITY_COMPLAINT_FREQUENCY")
    frustration_message_limit: int = Field(default=2, alias="FRUSTRATION_MESSAGE_LIMIT")
    resolution_limit: int = Field(default=2, alias="RESOLUTION_LIMIT")

    intent_confidence_floor: float = Field(default=0.5, alias="INTENT_CONFIDENCE_FLOOR")


settings = Settings()
