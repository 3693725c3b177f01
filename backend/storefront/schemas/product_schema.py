from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class VariantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    sku: str
    size: Optional[str] = None
    color: Optional[str] = None
    unit_price: Decimal
    inventory_count: int
    is_active: bool


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    sku: str
    slug: Optional[str] = None
    name: str
    description: Optional[str] = None
    base_price: Decimal
    category_id: Optional[int] = None
    image: Optional[str] = None
    active: bool
    variants: List[VariantOut] = []
