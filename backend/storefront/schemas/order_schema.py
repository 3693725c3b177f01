from typing import Optional

from pydantic import BaseModel, Field


class UpdateStatusIn(BaseModel):
    order_id: int
    status: Optional[str] = None
    payment_status: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_carrier: Optional[str] = None
    tracking_number: Optional[str] = None


class AdminStatusIn(BaseModel):
    status: str
    payment_status: Optional[str] = None
    shipping_carrier: Optional[str] = None
    tracking_number: Optional[str] = None


class NoteIn(BaseModel):
    note: str = Field(..., min_length=1)


class ResolveIn(BaseModel):
    note: str = Field(..., min_length=1)
