from typing import Dict, Optional, Union

import stripe

from storefront.adapters.mock_payment import PaymentDeclined, PaymentTransientError
from storefront.utils.log import get_logger

log = get_logger("payments")


class StripePaymentAdapter:
    """
    PaymentIntent-based card payments through the Stripe API.
    Uses its own StripeClient instead of the module-level api_key.
    """

    def __init__(self, api_key: str, client: Optional[stripe.StripeClient] = None):
        if not api_key and client is None:
            raise ValueError("STRIPE_SECRET_KEY is required for the stripe payment provider")
        self.client = client or stripe.StripeClient(api_key)

    def create_intent(self, amount_cents: int, currency: str, metadata: Optional[Dict] = None) -> Dict:
        try:
            intent = self.client.payment_intents.create(
                params={
                    "amount": amount_cents,
                    "currency": currency.lower(),
                    "metadata": metadata or {},
                    "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
                }
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            log.warning(f"Stripe unavailable creating intent: {e}")
            raise PaymentTransientError(str(e))
        except stripe.StripeError as e:
            log.error(f"Stripe rejected intent for {amount_cents} {currency}: {e}")
            raise PaymentDeclined(str(e))
        return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}

    def confirm(self, client_secret: str, payment_method: Union[Dict, str, None]) -> Dict:
        intent_id = client_secret.split("_secret_")[0]
        pm = payment_method.get("id") if isinstance(payment_method, dict) else payment_method
        params = {"payment_method": pm} if pm else {}
        try:
            intent = self.client.payment_intents.confirm(intent_id, params=params)
        except stripe.CardError as e:
            log.info(f"Card declined for {intent_id}: {e.code}")
            raise PaymentDeclined(e.user_message or str(e))
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise PaymentTransientError(str(e))
        except stripe.StripeError as e:
            log.error(f"Stripe error confirming {intent_id}: {e}")
            raise PaymentDeclined(str(e))
        return {"status": intent.status, "payment_intent_id": intent.id}

    def health_check(self) -> bool:
        try:
            self.client.balance.retrieve()
            return True
        except stripe.StripeError:
            return False
