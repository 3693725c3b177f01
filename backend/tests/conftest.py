import os
import tempfile

# settings are read when storefront is first imported
_tmp = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["RECONCILIATION_SWEEP_SECONDS"] = "0"
os.environ["PAYMENT_MOCK_DELAY_MS"] = "0"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["EMAIL_PROVIDER"] = "mock"

import pytest

from storefront.db import SessionLocal, init_db
from storefront.models.product import ProductVariant

ADMIN = {"X-Admin-Key": "test-admin-key"}

SHIPPING = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address_line1": "1 King St W",
    "city": "Toronto",
    "state": "ON",
    "postal_code": "M5H 1A1",
    "country": "CA",
}


@pytest.fixture(autouse=True, scope="module")
def fresh_db():
    init_db(reset=True)
    yield


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


def variant_id(sku: str) -> int:
    s = SessionLocal()
    try:
        return s.query(ProductVariant).filter(ProductVariant.sku == sku).one().id
    finally:
        s.close()


def set_stock(sku: str, count: int):
    s = SessionLocal()
    try:
        v = s.query(ProductVariant).filter(ProductVariant.sku == sku).one()
        v.inventory_count = count
        s.commit()
    finally:
        s.close()


def stock_of(sku: str) -> int:
    s = SessionLocal()
    try:
        return s.query(ProductVariant).filter(ProductVariant.sku == sku).one().inventory_count
    finally:
        s.close()
