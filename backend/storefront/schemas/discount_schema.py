from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DiscountTypeIn = Literal["percentage", "fixed_amount", "free_shipping"]
ApplicableToIn = Literal["all", "product", "variant", "category", "user"]


class ValidateCodeIn(BaseModel):
    code: str


class DiscountCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    discount_type: DiscountTypeIn
    discount_value: Decimal = Field(..., ge=0)
    minimum_purchase: Decimal = Field(Decimal("0.00"), ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: Optional[int] = Field(1, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    applicable_to: ApplicableToIn = "all"
    applicable_ids: Optional[List[str]] = None
    stackable: bool = False
    is_active: bool = True
    priority: int = Field(0, ge=0, le=100)
    first_purchase_only: bool = False
    minimum_items: Optional[int] = Field(None, ge=1)
    auto_apply: bool = False
    campaign_name: Optional[str] = None
    discount_category: Optional[str] = None


class DiscountUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = None
    discount_type: Optional[DiscountTypeIn] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    minimum_purchase: Optional[Decimal] = Field(None, ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: Optional[int] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    applicable_to: Optional[ApplicableToIn] = None
    applicable_ids: Optional[List[str]] = None
    stackable: Optional[bool] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=0, le=100)
    first_purchase_only: Optional[bool] = None
    minimum_items: Optional[int] = Field(None, ge=1)
    auto_apply: Optional[bool] = None
    campaign_name: Optional[str] = None
    discount_category: Optional[str] = None


class DiscountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    minimum_purchase: Decimal
    maximum_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int
    user_usage_limit: Optional[int] = None
    valid_from: datetime
    valid_until: Optional[datetime] = None
    applicable_to: str
    applicable_ids: Optional[List[str]] = None
    stackable: bool
    is_active: bool
    priority: int
    first_purchase_only: bool
    minimum_items: Optional[int] = None
    auto_apply: bool
    campaign_name: Optional[str] = None
    discount_category: Optional[str] = None
    created_by: Optional[str] = None
