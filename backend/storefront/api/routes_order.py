from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_email_client, get_user_id, require_admin
from storefront.db import get_db
from storefront.schemas.order_schema import UpdateStatusIn
from storefront.services.order_service import (
    OrderAccessDenied,
    OrderNotFound,
    OrderService,
    OrderServiceException,
)

router = APIRouter(tags=["orders"])


@router.get("/track/{order_number}", summary="Track an order")
def track_order(
    order_number: str,
    lookup_code: Optional[str] = Query(None, alias="lookupCode"),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    try:
        return OrderService(db).track(order_number, lookup_code=lookup_code, user_id=user_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderAccessDenied as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.post(
    "/update-status",
    summary="Move an order through its lifecycle",
    dependencies=[Depends(require_admin)],
)
def update_status(
    payload: UpdateStatusIn,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    svc = OrderService(db, email_client=email_client)
    try:
        order = svc.update_status(
            payload.order_id,
            payload.status,
            payload.payment_status,
            payment_intent_id=payload.stripe_payment_intent_id,
            payment_method=payload.payment_method,
            shipping_carrier=payload.shipping_carrier,
            tracking_number=payload.tracking_number,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (OrderServiceException, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "order": order}
