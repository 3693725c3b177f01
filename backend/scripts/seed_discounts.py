#!/usr/bin/env python3
"""
Seed discount codes from a JSON file, or a small default set when no file is given.

The file holds a list of objects using the admin API's field names, e.g.
    [{"code": "WELCOME30", "discount_type": "percentage", "discount_value": 30,
      "first_purchase_only": true}]

Codes that already exist are skipped.

Usage:
    python scripts/seed_discounts.py [--file discounts.json]
"""
import argparse
import json
import os
import sys
from decimal import Decimal

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.db import SessionLocal, init_db
from storefront.services.discount_service import DiscountService, DiscountServiceException

DEFAULT_DISCOUNTS = [
    {
        "code": "WELCOME30",
        "description": "30% off your first order",
        "discount_type": "percentage",
        "discount_value": "30",
        "maximum_discount": "50",
        "first_purchase_only": True,
        "user_usage_limit": 1,
        "priority": 80,
    },
    {
        "code": "FREESHIP",
        "description": "Free shipping on any order",
        "discount_type": "free_shipping",
        "discount_value": "0",
        "stackable": True,
        "priority": 10,
    },
    {
        "code": "SAVE10",
        "description": "$10 off orders over $50",
        "discount_type": "fixed_amount",
        "discount_value": "10",
        "minimum_purchase": "50",
        "usage_limit": 100,
        "priority": 40,
    },
]

DECIMAL_FIELDS = ("discount_value", "minimum_purchase", "maximum_discount")


def _normalize_entry(entry):
    data = dict(entry)
    for name in DECIMAL_FIELDS:
        if data.get(name) is not None:
            data[name] = Decimal(str(data[name]))
    return data


def seed(entries):
    init_db()
    db = SessionLocal()
    svc = DiscountService(db)
    created = 0
    try:
        for entry in entries:
            data = _normalize_entry(entry)
            if not svc.check_code_availability(data.get("code", "")):
                continue
            try:
                svc.create(data, created_by="seed")
                created += 1
            except DiscountServiceException as e:
                print(f"Skipping {data.get('code')}: {e}")
        print("Seeded discounts:", created)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", default=None, help="Path to a JSON list of discount definitions")
    args = parser.parse_args()
    if args.file:
        if not os.path.exists(args.file):
            print("File not found:", args.file)
            sys.exit(1)
        with open(args.file, "r", encoding="utf-8") as f:
            entries = json.load(f)
    else:
        entries = DEFAULT_DISCOUNTS
    seed(entries)
