import random
import threading
import time
from typing import Dict, Optional
from uuid import uuid4


class PaymentDeclined(Exception):
    """Raised for a non-retryable payment failure (e.g., insufficient funds)."""
    pass


class PaymentTransientError(Exception):
    """Raised for a temporary gateway error, suggesting a retry is appropriate."""
    pass


class MockPaymentAdapter:
    """
    In-process stand-in for the card processor.

    Intents live in memory for the lifetime of the adapter; build one adapter at
    process start and share it, the same way the real client is shared.
    """

    def __init__(self, delay_ms: int = 200, transient_failure_rate: float = 0.0):
        self.delay_seconds = delay_ms / 1000.0
        self.transient_failure_rate = transient_failure_rate
        self._intents: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def create_intent(self, amount_cents: int, currency: str, metadata: Optional[Dict] = None) -> Dict:
        intent_id = f"pi_mock_{uuid4().hex[:24]}"
        client_secret = f"{intent_id}_secret_{uuid4().hex[:16]}"
        with self._lock:
            self._intents[client_secret] = {
                "id": intent_id,
                "amount": amount_cents,
                "currency": currency.lower(),
                "status": "requires_payment_method",
                "metadata": metadata or {},
            }
        return {"client_secret": client_secret, "payment_intent_id": intent_id}

    def confirm(self, client_secret: str, payment_method: Optional[Dict]) -> Dict:
        """
        Simulates confirming a card payment.

        Args:
            client_secret: secret returned by create_intent.
            payment_method: dict with payment details; test payloads may set
                "force_decline", "force_transient" or "require_action".

        Returns:
            {"status": ..., "payment_intent_id": ...}; status is "succeeded" on success.

        Raises:
            PaymentDeclined: deterministic decline or unknown intent.
            PaymentTransientError: simulated gateway hiccup.
        """
        time.sleep(self.delay_seconds)
        with self._lock:
            intent = self._intents.get(client_secret)
        if not intent:
            raise PaymentDeclined("Unknown payment intent")
        if intent["status"] == "succeeded":
            return {"status": "succeeded", "payment_intent_id": intent["id"]}

        payment_method = payment_method or {}
        if payment_method.get("force_decline"):
            intent["status"] = "requires_payment_method"
            raise PaymentDeclined("Your card was declined")
        if payment_method.get("force_transient") or random.random() < self.transient_failure_rate:
            raise PaymentTransientError("Simulated transient gateway error")
        if payment_method.get("require_action"):
            intent["status"] = "requires_action"
        else:
            intent["status"] = "succeeded"
        return {"status": intent["status"], "payment_intent_id": intent["id"]}

    def health_check(self) -> bool:
        return True
