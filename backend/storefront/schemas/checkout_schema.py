from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ContactIn(BaseModel):
    # presence and format are checked by the checkout service so every field error comes back together
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class AddressIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "CA"


class CheckoutIn(BaseModel):
    contact: ContactIn
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    discount_codes: List[str] = []
    payment_method: Dict[str, Any] = {}


class QuoteIn(BaseModel):
    discount_codes: List[str] = []
    country: Optional[str] = None
    state: Optional[str] = None


class TaxCalculateIn(BaseModel):
    subtotal: Decimal = Field(..., ge=0)
    country: Optional[str] = None
    state: Optional[str] = None


class TaxRateIn(BaseModel):
    country_code: str = Field(..., min_length=2, max_length=2)
    state_code: str = Field(..., min_length=1, max_length=8)
    rate: Decimal = Field(..., ge=0, le=1)
