from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.models.product import Product, ProductVariant


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_sku(self, sku: str) -> Optional[Product]:
        return (
            self.db.query(Product)
            .filter(Product.sku == sku, Product.active == True)
            .first()
        )

    def get_variant(self, variant_id: int) -> Optional[ProductVariant]:
        return (
            self.db.query(ProductVariant)
            .filter(ProductVariant.id == variant_id)
            .first()
        )

    def get_variant_by_sku(self, sku: str) -> Optional[ProductVariant]:
        return (
            self.db.query(ProductVariant)
            .filter(ProductVariant.sku == sku)
            .first()
        )

    def list(
        self,
        q: Optional[str] = None,
        category_id: Optional[int] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Product], int]:
        query = self.db.query(Product).filter(Product.active == True)
        if q:
            like = f"%{q}%"
            query = query.filter(
                (Product.name.ilike(like)) | (Product.description.ilike(like))
            )
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        total = query.with_entities(func.count()).scalar() or 0
        items = query.order_by(Product.name).offset((page - 1) * size).limit(size).all()
        return items, total
