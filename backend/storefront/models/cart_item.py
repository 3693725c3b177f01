from decimal import Decimal

from sqlalchemy import Column, ForeignKey, Integer, Numeric
from sqlalchemy.orm import relationship

from storefront.db import Base


class CartItem(Base):
    __tablename__ = "cart_items"
    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(
        Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    variant_id = Column(
        Integer, ForeignKey("product_variants.id"), nullable=False, index=True
    )
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )  # price at time of add

    cart = relationship("Cart", back_populates="items")
    variant = relationship("ProductVariant")

    @property
    def total_price(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity
