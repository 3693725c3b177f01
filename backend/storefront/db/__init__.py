import importlib
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.config import settings
from storefront.utils.log import get_logger

log = get_logger("db")

DATABASE_URL = settings.DATABASE_URL
connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # request handlers, the scheduler and the redemption race tests share the file
    connect_args = {"check_same_thread": False, "timeout": 30}
engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# model modules must be imported before create_all so metadata is populated
MODEL_MODULES = [
    "storefront.models.category",
    "storefront.models.product",
    "storefront.models.cart",
    "storefront.models.cart_item",
    "storefront.models.discount_code",
    "storefront.models.discount_usage",
    "storefront.models.tax_rate",
    "storefront.models.order",
    "storefront.models.checkout_attempt",
]

SEED_CATEGORIES = [
    {"slug": "tees", "name": "T-Shirts"},
    {"slug": "hoodies", "name": "Hoodies"},
]

SEED_PRODUCTS = [
    {
        "sku": "TEE-CLASSIC",
        "slug": "classic-tee",
        "name": "Classic Tee",
        "base_price": "25.00",
        "category": "tees",
        "variants": [
            {"sku": "TEE-CLASSIC-M-BLK", "size": "M", "color": "Black", "inventory_count": 20},
            {"sku": "TEE-CLASSIC-L-BLK", "size": "L", "color": "Black", "inventory_count": 5},
        ],
    },
    {
        "sku": "HOOD-ZIP",
        "slug": "zip-hoodie",
        "name": "Zip Hoodie",
        "base_price": "60.00",
        "category": "hoodies",
        "variants": [
            {"sku": "HOOD-ZIP-M-GRY", "size": "M", "color": "Grey", "inventory_count": 10},
            {
                "sku": "HOOD-ZIP-XL-GRY",
                "size": "XL",
                "color": "Grey",
                "inventory_count": 2,
                "price_adjustment": "5.00",
            },
        ],
    },
]

SEED_TAX_RATES = [
    ("CA", "ON", "0.13"),
    ("CA", "QC", "0.14975"),
    ("CA", "NS", "0.15"),
    ("CA", "NB", "0.15"),
    ("CA", "BC", "0.12"),
    ("CA", "AB", "0.05"),
]


def _seed(session):
    from storefront.models.category import Category
    from storefront.models.product import Product, ProductVariant
    from storefront.models.tax_rate import TaxRate

    created = 0
    categories = {}
    for ent in SEED_CATEGORIES:
        c = session.query(Category).filter(Category.slug == ent["slug"]).first()
        if not c:
            c = Category(slug=ent["slug"], name=ent["name"])
            session.add(c)
            session.flush()
            created += 1
        categories[ent["slug"]] = c

    for ent in SEED_PRODUCTS:
        if session.query(Product).filter(Product.sku == ent["sku"]).first():
            continue
        p = Product(
            sku=ent["sku"],
            slug=ent["slug"],
            name=ent["name"],
            base_price=Decimal(ent["base_price"]),
            category_id=categories[ent["category"]].id,
        )
        for v in ent["variants"]:
            p.variants.append(
                ProductVariant(
                    sku=v["sku"],
                    size=v["size"],
                    color=v["color"],
                    inventory_count=v["inventory_count"],
                    price_adjustment=Decimal(v.get("price_adjustment", "0.00")),
                )
            )
        session.add(p)
        created += 1

    for country, state, rate in SEED_TAX_RATES:
        exists = (
            session.query(TaxRate)
            .filter(TaxRate.country_code == country, TaxRate.state_code == state)
            .first()
        )
        if not exists:
            session.add(TaxRate(country_code=country, state_code=state, rate=Decimal(rate)))
            created += 1

    if created:
        session.commit()
        log.info(f"Seeded {created} missing catalog/tax rows.")


def init_db(reset: bool = False, seed: bool = True):
    """
    Initialize DB schema.

    Behavior:
      - reset=True drops and recreates every table (tests, RESET_DB=1).
      - Otherwise existing tables are left in place and missing ones created.
      - seed=True inserts the demo catalog and the Canadian tax table if missing.
    """
    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset:
        log.info("Resetting database...")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    log.debug("Database tables ready.")

    if seed:
        s = SessionLocal()
        try:
            _seed(s)
        finally:
            s.close()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
