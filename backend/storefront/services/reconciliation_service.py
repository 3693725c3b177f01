from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.db import SessionLocal
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutAttemptStatus
from storefront.repositories.checkout_attempt_repo import CheckoutAttemptRepository
from storefront.utils.log import get_logger

log = get_logger("reconciliation")


class ReconciliationException(Exception):
    pass


class ReconciliationService:
    """
    Surfaces checkouts where a card was charged but no order exists, and lets an
    operator close them out once they have refunded or fulfilled by hand.
    """

    def __init__(self, db: Session, grace_seconds: Optional[int] = None):
        self.db = db
        self.attempts = CheckoutAttemptRepository(db)
        self.grace_seconds = (
            settings.RECONCILIATION_GRACE_SECONDS if grace_seconds is None else grace_seconds
        )

    def sweep(self) -> int:
        """Flag attempts stuck in PAYMENT_CONFIRMED past the grace period."""
        stale = self.attempts.stale_confirmed(self.grace_seconds)
        for attempt in stale:
            self.attempts.mark(
                attempt.key,
                CheckoutAttemptStatus.RECONCILIATION_NEEDED,
                last_error="Payment confirmed but no order was recorded",
            )
            log.error(
                f"RECONCILIATION NEEDED: payment {attempt.payment_intent_id} "
                f"({attempt.amount_cents} {attempt.currency}) for checkout key={attempt.key!r} has no order"
            )
        return len(stale)

    def list_pending(self, limit: int = 100) -> List[CheckoutAttempt]:
        return self.attempts.needing_reconciliation(limit=limit)

    def resolve(self, attempt_id: int, note: str, resolved_by: Optional[str] = None) -> CheckoutAttempt:
        attempt = self.attempts.get_by_id(attempt_id)
        if not attempt:
            raise ReconciliationException("Checkout attempt not found")
        if attempt.status != CheckoutAttemptStatus.RECONCILIATION_NEEDED:
            raise ReconciliationException(
                f"Checkout attempt is {attempt.status.value}, not awaiting reconciliation"
            )
        data = dict(attempt.data or {})
        data["resolution"] = {
            "note": note,
            "resolved_by": resolved_by or "admin",
            "resolved_at": datetime.now(timezone.utc).isoformat(),
        }
        log.info(f"Checkout key={attempt.key!r} resolved: {note}")
        return self.attempts.mark(attempt.key, CheckoutAttemptStatus.RESOLVED, data=data)


def run_sweep():
    """Scheduler entry point; owns its session."""
    db = SessionLocal()
    try:
        flagged = ReconciliationService(db).sweep()
        if flagged:
            log.warning(f"Reconciliation sweep flagged {flagged} checkout(s)")
    finally:
        db.close()
