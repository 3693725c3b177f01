from decimal import Decimal

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from storefront.db import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    slug = Column(String(256), unique=True, index=True, nullable=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    base_price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    image = Column(String(512), nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    category = relationship("Category")
    variants = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product sku={self.sku} name={self.name}>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku = Column(String(64), unique=True, index=True, nullable=False)
    size = Column(String(32), nullable=True)
    color = Column(String(64), nullable=True)
    price_adjustment = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    inventory_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="variants")

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.product.base_price or 0) + Decimal(self.price_adjustment or 0)

    @property
    def label(self) -> str:
        return " - ".join(p for p in (self.size, self.color) if p)
