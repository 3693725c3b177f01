from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.api.deps import get_email_client, get_payment_client
from storefront.db import engine

router = APIRouter()


@router.get("/health", tags=["health"])
def health(payment_client=Depends(get_payment_client), email_client=Depends(get_email_client)):
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except SQLAlchemyError:
        db_ok = False
    payment_ok = payment_client.health_check()
    email_ok = email_client.health_check()

    return {
        "status": "ok" if db_ok and payment_ok and email_ok else "degraded",
        "db": db_ok,
        "payment_adapter": payment_ok,
        "email_adapter": email_ok,
    }
