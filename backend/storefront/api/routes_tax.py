from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.pricing.totals import round2
from storefront.schemas.checkout_schema import TaxCalculateIn
from storefront.services.tax_service import TaxService

router = APIRouter(prefix="/api/tax", tags=["tax"])


@router.post("/calculate", summary="Tax for a subtotal shipped to a region")
def calculate(payload: TaxCalculateIn, db: Session = Depends(get_db)):
    rate = TaxService(db).resolve(payload.country, payload.state)
    return {
        "rate": float(rate),
        "taxAmount": float(round2(payload.subtotal * rate)),
        "country": payload.country,
        "state": payload.state,
    }
