from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.db import get_db
from storefront.models.cart import Cart
from storefront.services.cart_service import CartService

CART_COOKIE = "cart_uuid"


def get_payment_client(request: Request):
    return request.app.state.payment_client


def get_email_client(request: Request):
    return request.app.state.email_client


def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Optional[str]:
    # opaque id from the auth provider; absent for guests
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def require_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> str:
    if not x_admin_key or x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")
    return x_admin_key


def get_cart(
    request: Request,
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
) -> Cart:
    return CartService(db).get_or_create_cart(
        cart_uuid=request.cookies.get(CART_COOKIE), user_id=user_id
    )
