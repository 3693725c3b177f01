from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    ADMIN_API_KEY: str = "change-this-admin-key"
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # pricing
    CURRENCY: str = "CAD"
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("75.00")
    FLAT_SHIPPING_FEE: Decimal = Decimal("9.99")
    # "original": every stacked discount is computed against the cart subtotal
    # "progressive": each one is computed against what the previous ones left
    DISCOUNT_STACKING_BASE: str = "original"
    TAX_ON_DISCOUNTED_SUBTOTAL: bool = False
    FIRST_ORDER_DISCOUNT_CODE: str = "WELCOME30"

    # payments
    PAYMENT_PROVIDER: str = "mock"  # mock, stripe
    PAYMENT_MOCK_DELAY_MS: int = 200
    STRIPE_SECRET_KEY: Optional[str] = None

    # email
    EMAIL_PROVIDER: str = "mock"  # mock, sendgrid
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_ORDER_TEMPLATE_ID: Optional[str] = None
    SENDGRID_TRACKING_TEMPLATE_ID: Optional[str] = None
    FROM_EMAIL: str = "orders@example.com"
    FROM_NAME: str = "Storefront"

    # background jobs
    RECONCILIATION_SWEEP_SECONDS: int = 60
    RECONCILIATION_GRACE_SECONDS: int = 300
    INVENTORY_LOCK_TIMEOUT_SECONDS: int = 10

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
