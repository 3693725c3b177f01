from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from storefront.db import Base
from storefront.pricing.rules import DiscountRule, DiscountScope, DiscountType


class DiscountCode(Base):
    __tablename__ = "discount_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # upper-cased
    description = Column(Text, nullable=True)
    discount_type = Column(
        String(32), nullable=False
    )  # percentage, fixed_amount, free_shipping
    discount_value = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    minimum_purchase = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    maximum_discount = Column(Numeric(12, 2), nullable=True)  # percentage only
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    user_usage_limit = Column(Integer, nullable=True, default=1)
    valid_from = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    valid_until = Column(DateTime, nullable=True)
    applicable_to = Column(
        String(16), nullable=False, default="all"
    )  # all, product, variant, category, user
    applicable_ids = Column(JSON, nullable=True)
    stackable = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    first_purchase_only = Column(Boolean, nullable=False, default=False)
    minimum_items = Column(Integer, nullable=True)
    auto_apply = Column(Boolean, nullable=False, default=False)
    campaign_name = Column(String(128), nullable=True)
    discount_category = Column(String(64), nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    usages = relationship(
        "DiscountUsage", back_populates="discount", cascade="all, delete-orphan"
    )

    def to_rule(self) -> DiscountRule:
        return DiscountRule(
            id=self.id,
            code=self.code,
            discount_type=DiscountType(self.discount_type),
            discount_value=Decimal(self.discount_value),
            minimum_purchase=Decimal(self.minimum_purchase or 0),
            maximum_discount=(
                Decimal(self.maximum_discount)
                if self.maximum_discount is not None
                else None
            ),
            usage_limit=self.usage_limit,
            usage_count=self.usage_count or 0,
            user_usage_limit=self.user_usage_limit,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            scope=DiscountScope.build(self.applicable_to, self.applicable_ids),
            stackable=bool(self.stackable),
            is_active=bool(self.is_active),
            priority=self.priority or 0,
            first_purchase_only=bool(self.first_purchase_only),
            minimum_items=self.minimum_items,
        )

    def __repr__(self):
        return f"<DiscountCode code={self.code} type={self.discount_type}>"
