import json
import sqlite3
import sys

DB = sys.argv[1] if len(sys.argv) > 1 else "dev.db"
KEY = sys.argv[2] if len(sys.argv) > 2 else None
CODE = sys.argv[3] if len(sys.argv) > 3 else None

conn = sqlite3.connect(DB)
cur = conn.cursor()

print("=== Checkout Attempts ===")
if KEY:
    cur.execute(
        "SELECT id, key, status, payment_intent_id, order_number, response_body, last_error, updated_at FROM checkout_attempts WHERE key=?",
        (KEY,),
    )
else:
    cur.execute(
        "SELECT id, key, status, payment_intent_id, order_number, response_body, last_error, updated_at FROM checkout_attempts ORDER BY created_at DESC LIMIT 20"
    )
for r in cur.fetchall():
    rb = r[5]
    if isinstance(rb, str):
        try:
            rb = json.loads(rb)
        except ValueError:
            pass
    print(
        {
            "id": r[0],
            "key": r[1],
            "status": r[2],
            "payment_intent_id": r[3],
            "order_number": r[4],
            "response_body": rb,
            "last_error": r[6],
            "updated_at": r[7],
        }
    )

print("\n=== Awaiting Reconciliation ===")
cur.execute(
    "SELECT id, key, payment_intent_id, amount_cents, currency, last_error FROM checkout_attempts WHERE status='RECONCILIATION_NEEDED'"
)
for r in cur.fetchall():
    print(r)

print("\n=== Recent Orders ===")
cur.execute(
    "SELECT id, order_number, status, payment_status, total_amount, stripe_payment_intent_id, created_at FROM orders ORDER BY created_at DESC LIMIT 20"
)
for r in cur.fetchall():
    print(r)

if CODE:
    print(f"\n=== Redemptions of {CODE.upper()} ===")
    cur.execute(
        "SELECT code, usage_count, usage_limit FROM discount_codes WHERE code=?",
        (CODE.upper(),),
    )
    print(cur.fetchone())
    cur.execute(
        "SELECT u.id, u.user_id, u.order_id, u.amount_saved, u.used_at FROM discount_usages u "
        "JOIN discount_codes d ON d.id = u.discount_id WHERE d.code=? ORDER BY u.used_at DESC LIMIT 50",
        (CODE.upper(),),
    )
    for r in cur.fetchall():
        print(r)

conn.close()
