from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from storefront.adapters.mock_email import EmailError
from storefront.api.deps import get_email_client, require_admin
from storefront.db import get_db
from storefront.schemas.checkout_schema import TaxRateIn
from storefront.schemas.discount_schema import DiscountCreate, DiscountOut, DiscountUpdate
from storefront.schemas.order_schema import AdminStatusIn, NoteIn, ResolveIn
from storefront.services.discount_service import (
    DiscountNotFound,
    DiscountService,
    DiscountServiceException,
)
from storefront.services.order_service import OrderNotFound, OrderService, OrderServiceException
from storefront.services.reconciliation_service import (
    ReconciliationException,
    ReconciliationService,
)
from storefront.services.tax_service import TaxService, TaxServiceException

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _discount_out(dc) -> dict:
    return DiscountOut.model_validate(dc).model_dump(mode="json")


# --- discounts -------------------------------------------------------------


@router.get("/discounts", summary="List discount codes")
def list_discounts(
    is_active: Optional[bool] = Query(None),
    category: Optional[str] = Query(None),
    campaign: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    svc = DiscountService(db)
    return [_discount_out(d) for d in svc.list(is_active, category, campaign, search)]


@router.get("/discounts/stats", summary="Discount dashboard counters")
def discount_stats(db: Session = Depends(get_db)):
    return DiscountService(db).dashboard_stats()


@router.get("/discounts/generate-code", summary="Suggest an unused discount code")
def generate_code(
    prefix: str = Query("SAVE", max_length=16),
    length: int = Query(8, ge=4, le=32),
    db: Session = Depends(get_db),
):
    try:
        return {"code": DiscountService(db).generate_code(prefix, length)}
    except DiscountServiceException as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/discounts", status_code=201, summary="Create a discount code")
def create_discount(payload: DiscountCreate, db: Session = Depends(get_db)):
    try:
        dc = DiscountService(db).create(payload.model_dump(), created_by="admin")
    except DiscountServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _discount_out(dc)


@router.get("/discounts/{discount_id}", summary="Get a discount code")
def get_discount(discount_id: int, db: Session = Depends(get_db)):
    try:
        return _discount_out(DiscountService(db).get(discount_id))
    except DiscountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/discounts/{discount_id}", summary="Update a discount code")
def update_discount(discount_id: int, payload: DiscountUpdate, db: Session = Depends(get_db)):
    svc = DiscountService(db)
    try:
        dc = svc.update(discount_id, payload.model_dump(exclude_unset=True))
    except DiscountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DiscountServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _discount_out(dc)


@router.delete("/discounts/{discount_id}", summary="Delete a discount code")
def delete_discount(discount_id: int, db: Session = Depends(get_db)):
    try:
        DiscountService(db).delete(discount_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}


@router.post("/discounts/{discount_id}/toggle", summary="Activate / deactivate a discount code")
def toggle_discount(discount_id: int, db: Session = Depends(get_db)):
    try:
        return _discount_out(DiscountService(db).toggle(discount_id))
    except DiscountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/discounts/{discount_id}/statistics", summary="Usage statistics for one code")
def discount_statistics(discount_id: int, db: Session = Depends(get_db)):
    try:
        return DiscountService(db).statistics(discount_id)
    except DiscountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


# --- orders ----------------------------------------------------------------


@router.get("/orders", summary="List orders")
def list_orders(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    svc = OrderService(db)
    try:
        orders, total = svc.list_orders(status, limit, offset)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown order status: {status}")
    return {"items": [svc.serialize(o) for o in orders], "total": total}


@router.get("/orders/export", summary="Download orders as CSV")
def export_orders(
    status: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    try:
        body = OrderService(db).export_csv(status, payment_status, date_from, date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    filename = f"orders-{date.today().isoformat()}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/orders/{order_id}", summary="Get an order")
def get_order(order_id: int, db: Session = Depends(get_db)):
    svc = OrderService(db)
    try:
        order = svc.get(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    out = svc.serialize(order)
    out["user_id"] = order.user_id
    out["guest_email"] = order.guest_email
    out["stripe_payment_intent_id"] = order.stripe_payment_intent_id
    out["notes"] = (order.data or {}).get("notes", [])
    out["inventory_shortfall"] = (order.data or {}).get("inventory_shortfall", [])
    return out


@router.post("/orders/{order_id}/status", summary="Change an order's status")
def change_order_status(
    order_id: int,
    payload: AdminStatusIn,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    svc = OrderService(db, email_client=email_client)
    try:
        return svc.update_status(
            order_id,
            payload.status,
            payload.payment_status,
            shipping_carrier=payload.shipping_carrier,
            tracking_number=payload.tracking_number,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (OrderServiceException, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/orders/{order_id}/resend-confirmation", summary="Send the confirmation email again")
def resend_confirmation(
    order_id: int,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    try:
        return OrderService(db, email_client=email_client).resend_confirmation(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmailError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/orders/{order_id}/send-tracking-email", summary="Send the shipment tracking email")
def send_tracking_email(
    order_id: int,
    db: Session = Depends(get_db),
    email_client=Depends(get_email_client),
):
    try:
        return OrderService(db, email_client=email_client).send_tracking_email(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmailError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/orders/{order_id}/notes", summary="Add an internal note to an order")
def add_order_note(order_id: int, payload: NoteIn, db: Session = Depends(get_db)):
    try:
        order = OrderService(db).add_note(order_id, payload.note)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"notes": order.data.get("notes", [])}


# --- tax -------------------------------------------------------------------


@router.get("/tax-rates", summary="List tax rates")
def list_tax_rates(db: Session = Depends(get_db)):
    return [
        {"country_code": r.country_code, "state_code": r.state_code, "rate": float(r.rate)}
        for r in TaxService(db).list_rates()
    ]


@router.put("/tax-rates", summary="Create or replace a regional tax rate")
def upsert_tax_rate(payload: TaxRateIn, db: Session = Depends(get_db)):
    try:
        r = TaxService(db).upsert(payload.country_code, payload.state_code, payload.rate)
    except TaxServiceException as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"country_code": r.country_code, "state_code": r.state_code, "rate": float(r.rate)}


# --- reconciliation --------------------------------------------------------


def _attempt_out(a) -> dict:
    return {
        "id": a.id,
        "key": a.key,
        "status": a.status.value,
        "payment_intent_id": a.payment_intent_id,
        "amount_cents": a.amount_cents,
        "currency": a.currency,
        "email": a.email,
        "user_id": a.user_id,
        "last_error": a.last_error,
        "data": a.data,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


@router.get("/reconciliation", summary="Charged checkouts without an order")
def list_reconciliation(limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)):
    return [_attempt_out(a) for a in ReconciliationService(db).list_pending(limit=limit)]


@router.post("/reconciliation/{attempt_id}/resolve", summary="Close a reconciliation case")
def resolve_reconciliation(attempt_id: int, payload: ResolveIn, db: Session = Depends(get_db)):
    try:
        a = ReconciliationService(db).resolve(attempt_id, payload.note)
    except ReconciliationException as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _attempt_out(a)
