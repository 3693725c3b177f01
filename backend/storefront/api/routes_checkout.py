from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart, get_email_client, get_payment_client, get_user_id
from storefront.db import get_db
from storefront.models.cart import Cart
from storefront.schemas.checkout_schema import CheckoutIn, QuoteIn
from storefront.services.checkout_service import (
    CheckoutInProgress,
    CheckoutService,
    CheckoutValidationError,
    OrderCreationError,
    PaymentError,
)
from storefront.services.order_service import InventoryConflict
from storefront.utils.log import get_logger

log = get_logger("checkout")

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("/quote", summary="Price the current cart")
def quote(
    payload: QuoteIn,
    cart: Cart = Depends(get_cart),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
    payment_client=Depends(get_payment_client),
):
    svc = CheckoutService(db, payment_client)
    q = svc.quote(
        svc.carts.lines(cart), payload.discount_codes, payload.country, payload.state, user_id
    )
    return q.as_dict()


@router.post("", summary="Pay for the current cart and place the order")
def checkout(
    payload: CheckoutIn,
    cart: Cart = Depends(get_cart),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
    payment_client=Depends(get_payment_client),
    email_client=Depends(get_email_client),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    svc = CheckoutService(db, payment_client, email_client)
    billing = payload.billing_address.model_dump() if payload.billing_address else None
    try:
        return svc.checkout(
            cart,
            contact=payload.contact.model_dump(),
            shipping_address=payload.shipping_address.model_dump(),
            billing_address=billing,
            codes=payload.discount_codes,
            payment_method=payload.payment_method,
            user_id=user_id,
            idempotency_key=idempotency_key,
        )
    except CheckoutValidationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
    except PaymentError as e:
        raise HTTPException(
            status_code=402,
            detail={"message": str(e), "paymentIntentId": e.payment_intent_id},
        )
    except InventoryConflict as e:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(e),
                "items": e.details,
                "paymentIntentId": e.payment_intent_id,
            },
        )
    except CheckoutInProgress as e:
        raise HTTPException(status_code=409, detail={"message": str(e)})
    except OrderCreationError as e:
        raise HTTPException(
            status_code=500,
            detail={"message": str(e), "paymentIntentId": e.payment_intent_id},
        )
