from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from storefront.api.deps import CART_COOKIE, get_cart, get_user_id
from storefront.db import get_db
from storefront.models.cart import Cart
from storefront.schemas.cart_schema import AddItemIn, CartOut, MergeIn, UpdateItemIn
from storefront.services.cart_service import CartService, CartServiceException

router = APIRouter(prefix="/api/cart", tags=["cart"])


def cart_to_dict(svc: CartService, cart: Cart) -> dict:
    items = []
    for it in cart.items:
        v = it.variant
        items.append(
            {
                "id": it.id,
                "product_id": it.product_id,
                "variant_id": it.variant_id,
                "product_name": v.product.name if v else None,
                "variant": v.label if v else None,
                "quantity": it.quantity,
                "unit_price": float(it.unit_price),
                "total_price": float(it.total_price),
            }
        )
    return CartOut(
        cart_uuid=cart.cart_uuid,
        user_id=cart.user_id,
        items=items,
        subtotal=float(svc.subtotal(cart)),
    ).model_dump()


def _remember(response: Response, cart: Cart):
    if cart.cart_uuid:
        response.set_cookie(CART_COOKIE, cart.cart_uuid, httponly=False, samesite="Lax")


@router.get("", summary="Get cart")
def get_cart_view(response: Response, cart: Cart = Depends(get_cart), db: Session = Depends(get_db)):
    _remember(response, cart)
    return cart_to_dict(CartService(db), cart)


@router.post("/items", summary="Add item to cart")
def add_item(
    payload: AddItemIn,
    response: Response,
    cart: Cart = Depends(get_cart),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    try:
        item = svc.add_item(cart, payload.variant_id, payload.qty)
    except CartServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    _remember(response, cart)
    return {"item_id": item.id, "cart_uuid": cart.cart_uuid, "cart": cart_to_dict(svc, cart)}


@router.patch("/items/{item_id}", summary="Change item quantity")
def update_item(
    item_id: int,
    payload: UpdateItemIn,
    cart: Cart = Depends(get_cart),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    try:
        svc.update_quantity(cart, item_id, payload.quantity)
    except CartServiceException as e:
        code = 404 if "not found" in str(e) else 400
        raise HTTPException(status_code=code, detail=str(e))
    return cart_to_dict(svc, cart)


@router.delete("/items/{item_id}", summary="Remove item")
def remove_item(item_id: int, cart: Cart = Depends(get_cart), db: Session = Depends(get_db)):
    svc = CartService(db)
    try:
        svc.remove_item(cart, item_id)
    except CartServiceException as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}


@router.delete("", summary="Empty cart")
def clear_cart(cart: Cart = Depends(get_cart), db: Session = Depends(get_db)):
    CartService(db).clear(cart)
    return {"ok": True}


@router.post("/merge", summary="Move a guest cart into the signed-in user's cart")
def merge_cart(
    payload: MergeIn,
    response: Response,
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    if not user_id:
        raise HTTPException(status_code=401, detail="Sign in to merge carts")
    svc = CartService(db)
    cart = svc.merge_guest_into_user(payload.cart_uuid, user_id)
    response.delete_cookie(CART_COOKIE)
    return cart_to_dict(svc, cart)
