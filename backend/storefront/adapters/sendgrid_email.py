from typing import Dict, Optional

import requests

from storefront.adapters.mock_email import EmailError
from storefront.utils.log import get_logger

log = get_logger("email")

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridEmailAdapter:
    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        template_id: Optional[str] = None,
        tracking_template_id: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("SENDGRID_API_KEY is required for the sendgrid email provider")
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.template_id = template_id
        self.tracking_template_id = tracking_template_id
        self.timeout = timeout
        self.http = session or requests.Session()

    def _base(self, to: str) -> Dict:
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
        }

    def _payload(self, to: str, order_data: Dict) -> Dict:
        payload = self._base(to)
        if self.template_id:
            payload["personalizations"][0]["dynamic_template_data"] = order_data
            payload["template_id"] = self.template_id
            return payload
        # inline fallback when no dynamic template is configured
        lookup = order_data.get("lookupCode")
        payload["personalizations"][0]["subject"] = (
            f"Order Confirmation - {order_data.get('orderNumber')}"
        )
        payload["content"] = [
            {
                "type": "text/html",
                "value": (
                    "<h1>Thank you for your order!</h1>"
                    f"<p>Order Number: <strong>{order_data.get('orderNumber')}</strong></p>"
                    + (f"<p>Guest Lookup Code: <strong>{lookup}</strong></p>" if lookup else "")
                    + f"<p>Total: <strong>{order_data.get('totalAmount')} {order_data.get('currency', '')}</strong></p>"
                    "<p>We'll send you another email when your order ships.</p>"
                ),
            }
        ]
        return payload

    def _tracking_payload(self, to: str, tracking_data: Dict) -> Dict:
        payload = self._base(to)
        if self.tracking_template_id:
            payload["personalizations"][0]["dynamic_template_data"] = tracking_data
            payload["template_id"] = self.tracking_template_id
            return payload
        url = tracking_data.get("trackingUrl")
        payload["personalizations"][0]["subject"] = (
            f"Your order is on its way - {tracking_data.get('orderNumber')}"
        )
        payload["content"] = [
            {
                "type": "text/html",
                "value": (
                    "<h1>Your order has shipped!</h1>"
                    f"<p>Order Number: <strong>{tracking_data.get('orderNumber')}</strong></p>"
                    f"<p>Carrier: <strong>{tracking_data.get('carrier')}</strong></p>"
                    f"<p>Tracking Number: <strong>{tracking_data.get('trackingNumber')}</strong></p>"
                    + (f'<p><a href="{url}">Track your package</a></p>' if url else "")
                ),
            }
        ]
        return payload

    def _send(self, payload: Dict) -> None:
        try:
            r = self.http.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise EmailError(f"SendGrid request failed: {e}") from e
        if r.status_code >= 400:
            raise EmailError(f"SendGrid rejected message ({r.status_code}): {r.text[:200]}")

    def send_order_confirmation(self, to: str, order_data: Dict) -> Dict:
        self._send(self._payload(to, order_data))
        log.info(f"Order confirmation {order_data.get('orderNumber')} sent to {to}")
        return {"status": "sent", "to": to}

    def send_tracking(self, to: str, tracking_data: Dict) -> Dict:
        self._send(self._tracking_payload(to, tracking_data))
        log.info(f"Tracking for {tracking_data.get('orderNumber')} sent to {to}")
        return {"status": "sent", "to": to}

    def health_check(self) -> bool:
        return bool(self.api_key)
