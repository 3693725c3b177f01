from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storefront.db import Base


class DiscountUsage(Base):
    """
    One redemption of a discount code. A row is written as pending when checkout
    claims the code and completed once the order exists.
    """

    __tablename__ = "discount_usages"
    __table_args__ = (
        # per-user limit: slot runs 0..user_usage_limit-1, NULL for guests and unlimited codes
        UniqueConstraint("discount_id", "user_id", "slot", name="uq_discount_usage_slot"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    discount_id = Column(
        Integer,
        ForeignKey("discount_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    slot = Column(Integer, nullable=True)
    pending = Column(Boolean, nullable=False, default=False)
    amount_saved = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    order_total = Column(Numeric(12, 2), nullable=True)
    used_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    discount = relationship("DiscountCode", back_populates="usages")
