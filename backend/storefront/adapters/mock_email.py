import time
from typing import Dict, List


class EmailError(Exception):
    pass


class MockEmailAdapter:
    """
    Records outgoing mail instead of sending it.
    sent holds {"to", "subject", "data"} dicts in send order.
    """

    def __init__(self, delay_ms: int = 0, fail: bool = False):
        self.delay = delay_ms / 1000.0
        self.fail = fail
        self.sent: List[Dict] = []

    def send_order_confirmation(self, to: str, order_data: Dict) -> Dict:
        time.sleep(self.delay)
        if self.fail:
            raise EmailError("Simulated email provider failure")
        msg = {
            "to": to,
            "subject": f"Order Confirmation - {order_data.get('orderNumber')}",
            "data": order_data,
        }
        self.sent.append(msg)
        return {"status": "sent", "to": to}

    def send_tracking(self, to: str, tracking_data: Dict) -> Dict:
        time.sleep(self.delay)
        if self.fail:
            raise EmailError("Simulated email provider failure")
        msg = {
            "to": to,
            "subject": f"Your order is on its way - {tracking_data.get('orderNumber')}",
            "data": tracking_data,
        }
        self.sent.append(msg)
        return {"status": "sent", "to": to}

    def health_check(self) -> bool:
        return not self.fail
