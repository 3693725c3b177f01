import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String

from storefront.db import Base


class CheckoutAttemptStatus(enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RECONCILIATION_NEEDED = "RECONCILIATION_NEEDED"
    RESOLVED = "RESOLVED"


class CheckoutAttempt(Base):
    """
    One row per checkout attempt, keyed by the client's idempotency key.
    Tracks the part of the order lifecycle that happens before an order row exists.
    """

    __tablename__ = "checkout_attempts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), unique=True, nullable=False, index=True)
    status = Column(
        Enum(CheckoutAttemptStatus),
        nullable=False,
        default=CheckoutAttemptStatus.PENDING_PAYMENT,
    )
    user_id = Column(String(64), nullable=True)
    email = Column(String(256), nullable=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    payment_intent_id = Column(String(128), nullable=True, index=True)
    order_id = Column(Integer, nullable=True)
    order_number = Column(String(32), nullable=True)
    response_body = Column(JSON, nullable=True)
    last_error = Column(String(1024), nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
