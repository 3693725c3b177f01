from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart, get_user_id
from storefront.db import get_db
from storefront.models.cart import Cart
from storefront.schemas.discount_schema import ValidateCodeIn
from storefront.services.cart_service import CartService
from storefront.services.discount_service import DiscountService

router = APIRouter(prefix="/api/discounts", tags=["discounts"])


@router.post("/validate", summary="Check a discount code against the current cart")
def validate_code(
    payload: ValidateCodeIn,
    cart: Cart = Depends(get_cart),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    lines = CartService(db).lines(cart)
    return DiscountService(db).validate_code(payload.code, lines, user_id)


@router.post("/auto-apply", summary="Best automatic discount for the current cart")
def auto_apply(
    cart: Cart = Depends(get_cart),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    lines = CartService(db).lines(cart)
    return {"discount": DiscountService(db).auto_apply(lines, user_id)}


@router.get("/first-order", summary="Welcome discount for a user without orders")
def first_order(
    cart: Cart = Depends(get_cart),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in to see your welcome discount")
    lines = CartService(db).lines(cart)
    return {"discount": DiscountService(db).first_order_discount(user_id, lines)}
