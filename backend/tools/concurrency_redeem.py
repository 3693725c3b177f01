import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import argparse
import concurrent.futures
import json

import requests

BASE = os.environ.get("STOREFRONT_BASE", "http://127.0.0.1:8000")

SHIPPING = {
    "first_name": "Load",
    "last_name": "Test",
    "address_line1": "1 King St W",
    "city": "Toronto",
    "state": "ON",
    "postal_code": "M5H 1A1",
    "country": "CA",
}


def checkout_task(i, variant_id, code, idempotency_key=None):
    # every worker is a separate shopper with its own cart cookie
    s = requests.Session()
    try:
        r = s.post(f"{BASE}/api/cart/items", json={"variant_id": variant_id, "qty": 1}, timeout=10)
        if r.status_code != 200:
            return (i, "cart", r.status_code, r.text)
        payload = {
            "contact": {"email": f"load{i}@example.com"},
            "shipping_address": SHIPPING,
            "discount_codes": [code] if code else [],
            "payment_method": {"token": "tok-test"},
        }
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        r = s.post(f"{BASE}/api/checkout", json=payload, headers=headers, timeout=30)
        return (i, "checkout", r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "checkout", "ERR", str(e))


def run_concurrent(workers, variant_id, code, idempotency_key=None):
    print(f"Running checkout test: workers={workers}, variant={variant_id}, code={code}, key={idempotency_key}")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(checkout_task, i, variant_id, code, idempotency_key) for i in range(workers)]
        results = [f.result() for f in futures]
    print("Results:")
    for r in results:
        print(r)
    ok = [json.loads(r[3]) for r in results if r[2] == 200]
    print("Successful checkouts:", len(ok))
    print("Unique orders:", {o.get("orderNumber") for o in ok})
    if code:
        print(f"Orders carrying {code}:", sum(1 for o in ok if code.upper() in o.get("discountCodes", [])))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency test tool (discount redemption or idempotent checkout).")
    sub = parser.add_subparsers(dest="mode", required=True)

    r = sub.add_parser("redeem", help="many shoppers race for a limited discount code")
    r.add_argument("--code", required=True)
    r.add_argument("--variant", type=int, default=1)
    r.add_argument("--workers", type=int, default=8)

    o = sub.add_parser("idempotent", help="one checkout key submitted many times at once")
    o.add_argument("--idempotency", default="idem-test")
    o.add_argument("--variant", type=int, default=1)
    o.add_argument("--workers", type=int, default=8)

    args = parser.parse_args()

    if args.mode == "redeem":
        run_concurrent(args.workers, args.variant, args.code)
    elif args.mode == "idempotent":
        run_concurrent(args.workers, args.variant, None, args.idempotency)
