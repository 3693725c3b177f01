import os
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.adapters import build_email_adapter, build_payment_adapter
from storefront.api.health import router as health_router
from storefront.api.routes_admin import router as admin_router
from storefront.api.routes_cart import router as cart_router
from storefront.api.routes_catalogue import router as catalogue_router
from storefront.api.routes_checkout import router as checkout_router
from storefront.api.routes_discounts import router as discounts_router
from storefront.api.routes_order import router as order_router
from storefront.api.routes_tax import router as tax_router
from storefront.config import settings
from storefront.db import init_db
from storefront.services.reconciliation_service import run_sweep
from storefront.utils.log import get_logger

log = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # RESET_DB=1 in CI drops and reseeds the schema
    init_db(reset=os.environ.get("RESET_DB", "0") in ("1", "true", "True"))

    scheduler = None
    if settings.RECONCILIATION_SWEEP_SECONDS > 0:
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_sweep,
            "interval",
            seconds=settings.RECONCILIATION_SWEEP_SECONDS,
            id="reconciliation_sweep",
        )
        scheduler.start()
        log.info(f"Reconciliation sweep every {settings.RECONCILIATION_SWEEP_SECONDS}s")

    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)


app = FastAPI(title="Storefront - Backend", version="0.1.0", lifespan=lifespan)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    log.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# one payment and one email client per process, handed to handlers through dependencies
app.state.payment_client = build_payment_adapter(settings)
app.state.email_client = build_email_adapter(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(catalogue_router, prefix="/api/products", tags=["catalogue"])

app.include_router(cart_router, tags=["cart"])

app.include_router(discounts_router, tags=["discounts"])

app.include_router(tax_router, tags=["tax"])

app.include_router(checkout_router, tags=["checkout"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])

app.include_router(admin_router, tags=["admin"])
