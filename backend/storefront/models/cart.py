from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from sqlalchemy.orm import relationship

from storefront.db import Base


class Cart(Base):
    __tablename__ = "carts"
    id = Column(Integer, primary_key=True, index=True)
    cart_uuid = Column(
        String(64), unique=True, index=True, nullable=True
    )  # guest identifier
    user_id = Column(
        String(64), nullable=True, index=True
    )  # opaque id from the auth provider; never set together with cart_uuid
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    checked_out = Column(Boolean, default=False, nullable=False)

    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan"
    )
