from typing import List, Optional

from pydantic import BaseModel, Field


class AddItemIn(BaseModel):
    variant_id: int
    qty: int = Field(1, gt=0)


class UpdateItemIn(BaseModel):
    quantity: int = Field(..., ge=0)


class MergeIn(BaseModel):
    cart_uuid: str


class CartItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int
    product_name: Optional[str] = None
    variant: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class CartOut(BaseModel):
    cart_uuid: Optional[str] = None
    user_id: Optional[str] = None
    items: List[CartItemOut]
    subtotal: float
