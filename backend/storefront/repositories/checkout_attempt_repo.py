from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.db import SessionLocal  # short-lived sessions for visibility across requests
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutAttemptStatus
from storefront.utils.log import get_logger

log = get_logger("checkout")


class CheckoutAttemptRepository:
    def __init__(self, db: Session):
        # db is the caller's session (longer-lived)
        self.db = db

    def get(self, key: str) -> Optional[CheckoutAttempt]:
        """
        Return the attempt for `key`, expiring session state first so a record
        committed by another session is read fresh.
        """
        self.db.expire_all()
        return self.db.query(CheckoutAttempt).filter(CheckoutAttempt.key == key).first()

    def get_by_id(self, attempt_id: int) -> Optional[CheckoutAttempt]:
        return self.db.query(CheckoutAttempt).filter(CheckoutAttempt.id == attempt_id).first()

    def begin(self, key: str, **fields) -> Tuple[CheckoutAttempt, bool]:
        """
        Atomically ensure an attempt row exists.
        Returns (attempt_from_caller_session, created_flag)
          - created_flag == True  -> this call inserted the PENDING_PAYMENT row (owner)
          - created_flag == False -> row already existed (retry / concurrent request)

        The INSERT is committed on its own session so a concurrent request sees it.
        """
        created = False
        try:
            with SessionLocal() as s:
                s.add(
                    CheckoutAttempt(
                        key=key, status=CheckoutAttemptStatus.PENDING_PAYMENT, **fields
                    )
                )
                s.commit()
                created = True
        except IntegrityError:
            log.debug(f"begin(): attempt already exists for key={key!r}")
        return self.get(key), created

    def mark(self, key: str, status: CheckoutAttemptStatus, **fields) -> CheckoutAttempt:
        """
        Move an attempt to `status` and commit immediately on a short-lived session,
        so the state survives a failure later in the caller's transaction.
        """
        with SessionLocal() as s:
            rec = s.query(CheckoutAttempt).filter(CheckoutAttempt.key == key).first()
            if not rec:
                raise RuntimeError("Checkout attempt missing for key: " + str(key))
            rec.status = status
            for name, value in fields.items():
                setattr(rec, name, value)
            s.commit()
        log.debug(f"mark(): key={key!r} status={status.value}")
        return self.get(key)

    def mark_completed(self, key: str, response_body: dict) -> CheckoutAttempt:
        return self.mark(
            key,
            CheckoutAttemptStatus.ORDER_CREATED,
            response_body=response_body,
            order_id=response_body.get("orderId"),
            order_number=response_body.get("orderNumber"),
        )

    def needing_reconciliation(self, limit: int = 100) -> List[CheckoutAttempt]:
        return (
            self.db.query(CheckoutAttempt)
            .filter(CheckoutAttempt.status == CheckoutAttemptStatus.RECONCILIATION_NEEDED)
            .order_by(CheckoutAttempt.created_at)
            .limit(limit)
            .all()
        )

    def stale_confirmed(self, older_than_seconds: int) -> List[CheckoutAttempt]:
        # naive UTC: SQLite hands back naive datetimes for comparison
        cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(
            seconds=older_than_seconds
        )
        return (
            self.db.query(CheckoutAttempt)
            .filter(
                CheckoutAttempt.status == CheckoutAttemptStatus.PAYMENT_CONFIRMED,
                CheckoutAttempt.updated_at <= cutoff,
            )
            .all()
        )
