import csv
import io
import secrets
import string
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.adapters.mock_email import EmailError
from storefront.config import settings
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from storefront.models.product import ProductVariant
from storefront.pricing.totals import round2
from storefront.services.inventory_service import InventoryService
from storefront.utils.log import get_logger

log = get_logger("orders")

LOOKUP_ALPHABET = string.ascii_uppercase + string.digits

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.PAYMENT_FAILED,
    },
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.PAYMENT_FAILED: set(),
}

# stock has been taken out for orders in these states
STOCK_COMMITTED = {OrderStatus.CONFIRMED, OrderStatus.PROCESSING}

CARRIERS = {
    "canada_post": (
        "Canada Post",
        "https://www.canadapost-postescanada.ca/track-reperage/en#/search?searchFor={}",
    ),
    "purolator": ("Purolator", "https://www.purolator.com/en/shipping/tracker?pin={}"),
    "ups": ("UPS", "https://www.ups.com/track?loc=en_CA&tracknum={}"),
    "fedex": ("FedEx", "https://www.fedex.com/fedextrack/?trknbr={}"),
}

EXPORT_COLUMNS = [
    "Order Number",
    "Date",
    "Customer Name",
    "Customer Email",
    "Total",
    "Status",
    "Payment Status",
    "Tracking Number",
]


class OrderServiceException(Exception):
    pass


class OrderNotFound(OrderServiceException):
    pass


class OrderAccessDenied(OrderServiceException):
    pass


class InventoryConflict(OrderServiceException):
    """
    One or more lines cannot be fulfilled. details holds one entry per line:
    {variant_id, product_name, variant, requested, available, message}.
    """

    def __init__(self, details: List[Dict], payment_intent_id: Optional[str] = None):
        self.details = details
        self.payment_intent_id = payment_intent_id
        super().__init__("Some items in your cart are no longer available")


def can_transition(current, new) -> bool:
    return OrderStatus(new) in ORDER_TRANSITIONS[OrderStatus(current)]


def tracking_url(carrier: Optional[str], tracking_number: Optional[str]) -> Optional[str]:
    if not carrier or not tracking_number or carrier not in CARRIERS:
        return None
    return CARRIERS[carrier][1].format(tracking_number)


class OrderService:
    def __init__(self, db: Session, email_client=None):
        self.db = db
        self.inventory = InventoryService(db)
        self.email_client = email_client

    def _gen_order_number(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m")
        return f"ORD-{stamp}-{uuid4().hex[:6].upper()}"

    def _gen_lookup_code(self) -> str:
        return "".join(secrets.choice(LOOKUP_ALPHABET) for _ in range(6))

    def create_order(self, order_data: Dict) -> Dict:
        """
        Persist a paid order.

        order_data keys:
            items: list of {variant_id, quantity, unit_price?}
            totals: rounded amounts {subtotal, discount_amount, shipping_amount, tax_amount, total_amount}
            user_id / guest_email, shipping_address, billing_address,
            payment_status, payment_intent_id, payment_method, currency, discount_codes

        Returns {"orderId", "orderNumber", "lookupCode"}.

        Raises:
            InventoryConflict: any line is missing, inactive or short on stock.
        """
        items = order_data.get("items") or []
        if not items:
            raise OrderServiceException("Order has no items")
        issues = self.inventory.check_lines(items)
        if issues:
            raise InventoryConflict(issues)

        totals = order_data["totals"]
        user_id = order_data.get("user_id")
        order = Order(
            order_number=self._gen_order_number(),
            user_id=user_id,
            guest_email=None if user_id else order_data.get("guest_email"),
            guest_lookup_code=None if user_id else self._gen_lookup_code(),
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus(
                order_data.get("payment_status", PaymentStatus.PENDING.value)
            ).value,
            subtotal=round2(totals["subtotal"]),
            discount_amount=round2(totals["discount_amount"]),
            shipping_amount=round2(totals["shipping_amount"]),
            tax_amount=round2(totals["tax_amount"]),
            total_amount=round2(totals["total_amount"]),
            currency=order_data.get("currency") or settings.CURRENCY,
            shipping_address=order_data.get("shipping_address"),
            billing_address=order_data.get("billing_address"),
            stripe_payment_intent_id=order_data.get("payment_intent_id"),
            payment_method=order_data.get("payment_method"),
            data={"discount_codes": list(order_data.get("discount_codes") or [])},
        )
        for it in items:
            variant = self.db.get(ProductVariant, int(it["variant_id"]))
            qty = int(it["quantity"])
            unit_price = Decimal(it.get("unit_price", variant.unit_price))
            order.items.append(
                OrderItem(
                    product_id=variant.product_id,
                    variant_id=variant.id,
                    product_name=variant.product.name,
                    variant_label=variant.label,
                    quantity=qty,
                    unit_price=round2(unit_price),
                    total_price=round2(unit_price * qty),
                )
            )
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        log.info(f"Created order {order.order_number} total={order.total_amount} {order.currency}")
        return {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "lookupCode": order.guest_lookup_code,
        }

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if not order:
            raise OrderNotFound("Order not found")
        return order

    def get_by_number(self, order_number: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.order_number == order_number).first()

    def update_status(
        self,
        order_id: int,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        shipping_carrier: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Dict:
        """
        Moving to confirmed commits stock and sends the confirmation email; moving
        to shipped sends the tracking email once carrier and number are known.
        """
        order = self.get(order_id)
        previous = OrderStatus(order.status)
        new = OrderStatus(status) if status else previous
        if new is not previous and not can_transition(previous, new):
            raise OrderServiceException(
                f"Cannot move order from {previous.value} to {new.value}"
            )
        if shipping_carrier and shipping_carrier not in CARRIERS:
            raise OrderServiceException(f"Unknown shipping carrier: {shipping_carrier}")

        order.status = new.value
        if shipping_carrier:
            order.shipping_carrier = shipping_carrier
        if tracking_number:
            order.tracking_number = tracking_number.strip()
        if payment_status:
            order.payment_status = PaymentStatus(payment_status).value
        if payment_intent_id:
            order.stripe_payment_intent_id = payment_intent_id
        if payment_method:
            order.payment_method = payment_method

        if new is not previous:
            if new is OrderStatus.CONFIRMED:
                self.inventory.commit_order(order)
            elif new is OrderStatus.CANCELLED and previous in STOCK_COMMITTED:
                self.inventory.restock_order(order)
        self.db.commit()
        self.db.refresh(order)
        log.info(
            f"Order {order.order_number}: status {previous.value} -> {order.status}, "
            f"payment={order.payment_status}"
        )

        if new is OrderStatus.CONFIRMED and new is not previous:
            self.send_confirmation(order)
        elif new is OrderStatus.SHIPPED and new is not previous:
            self.send_tracking(order)

        return {
            "id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "shipping_carrier": order.shipping_carrier,
            "tracking_number": order.tracking_number,
        }

    def send_confirmation(self, order: Order) -> bool:
        """Email failures are logged and never fail the order."""
        to = order.contact_email
        if not self.email_client or not to:
            log.warning(f"No confirmation email sent for {order.order_number}: no client or address")
            return False
        try:
            self.email_client.send_order_confirmation(to, self.email_payload(order))
        except EmailError as e:
            log.error(f"Confirmation email for {order.order_number} failed: {e}")
            return False
        log.info(f"Confirmation email sent for {order.order_number}")
        return True

    def email_payload(self, order: Order) -> Dict:
        return {
            "orderNumber": order.order_number,
            "lookupCode": order.guest_lookup_code,
            "subtotal": str(order.subtotal),
            "discountAmount": str(order.discount_amount),
            "shippingAmount": str(order.shipping_amount),
            "taxAmount": str(order.tax_amount),
            "totalAmount": str(order.total_amount),
            "currency": order.currency,
            "shippingAddress": order.shipping_address,
            "items": [
                {
                    "productName": it.product_name,
                    "variant": it.variant_label,
                    "quantity": it.quantity,
                    "totalPrice": str(it.total_price),
                }
                for it in order.items
            ],
        }

    def tracking_payload(self, order: Order) -> Dict:
        carrier_name = CARRIERS[order.shipping_carrier][0]
        return {
            "orderNumber": order.order_number,
            "carrier": carrier_name,
            "trackingNumber": order.tracking_number,
            "trackingUrl": tracking_url(order.shipping_carrier, order.tracking_number),
            "shippingAddress": order.shipping_address,
        }

    def send_tracking(self, order: Order) -> bool:
        """Sent when an order ships; like the confirmation, failures are only logged."""
        to = order.contact_email
        if not self.email_client or not to:
            log.warning(f"No tracking email sent for {order.order_number}: no client or address")
            return False
        if not order.shipping_carrier or not order.tracking_number:
            log.warning(f"Order {order.order_number} shipped without tracking information")
            return False
        try:
            self.email_client.send_tracking(to, self.tracking_payload(order))
        except EmailError as e:
            log.error(f"Tracking email for {order.order_number} failed: {e}")
            return False
        log.info(f"Tracking email sent for {order.order_number}")
        return True

    def _admin_recipient(self, order: Order) -> str:
        if not self.email_client:
            raise OrderServiceException("No email client configured")
        if not order.contact_email:
            raise OrderServiceException("Order has no contact email")
        return order.contact_email

    def resend_confirmation(self, order_id: int) -> Dict:
        """
        Operator-triggered resend.

        Raises:
            OrderNotFound, OrderServiceException: nothing to send or no one to send it to.
            EmailError: the provider refused the message.
        """
        order = self.get(order_id)
        to = self._admin_recipient(order)
        self.email_client.send_order_confirmation(to, self.email_payload(order))
        log.info(f"Confirmation email resent for {order.order_number}")
        return {"success": True, "message": "Confirmation email sent successfully"}

    def send_tracking_email(self, order_id: int) -> Dict:
        order = self.get(order_id)
        if not order.shipping_carrier or not order.tracking_number:
            raise OrderServiceException("Tracking information not set")
        to = self._admin_recipient(order)
        self.email_client.send_tracking(to, self.tracking_payload(order))
        log.info(f"Tracking email sent for {order.order_number}")
        return {"success": True, "message": "Tracking email sent successfully"}

    def track(
        self,
        order_number: str,
        lookup_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Dict:
        """
        Guest orders need their lookup code; user orders can only be read by
        the user who placed them.
        """
        order = self.get_by_number(order_number)
        if not order:
            raise OrderNotFound("Order not found")
        if order.user_id:
            if user_id != order.user_id:
                raise OrderAccessDenied("Unauthorized")
        elif not lookup_code or lookup_code.strip().upper() != order.guest_lookup_code:
            raise OrderAccessDenied("Invalid lookup code")
        if order.status == OrderStatus.CANCELLED.value:
            return {"error": "order_cancelled", "message": "This order has been cancelled"}
        return self.serialize(order)

    def list_orders(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> Tuple[List[Order], int]:
        q = self.db.query(Order)
        if status:
            q = q.filter(Order.status == OrderStatus(status).value)
        total = q.with_entities(func.count(Order.id)).scalar() or 0
        orders = q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
        return orders, total

    def export_csv(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> str:
        """Newest first; date_to is inclusive."""
        q = self.db.query(Order)
        if status:
            q = q.filter(Order.status == OrderStatus(status).value)
        if payment_status:
            q = q.filter(Order.payment_status == PaymentStatus(payment_status).value)
        if date_from:
            q = q.filter(Order.created_at >= datetime.combine(date_from, datetime.min.time()))
        if date_to:
            end = datetime.combine(date_to + timedelta(days=1), datetime.min.time())
            q = q.filter(Order.created_at < end)

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(EXPORT_COLUMNS)
        for order in q.order_by(Order.created_at.desc(), Order.id.desc()).all():
            address = order.shipping_address or {}
            name = f"{address.get('first_name') or ''} {address.get('last_name') or ''}".strip()
            writer.writerow(
                [
                    order.order_number,
                    order.created_at.date().isoformat() if order.created_at else "",
                    name or "N/A",
                    order.contact_email or "",
                    f"{round2(order.total_amount):.2f}",
                    order.status,
                    order.payment_status,
                    order.tracking_number or "",
                ]
            )
        return buf.getvalue()

    def add_note(self, order_id: int, note: str, author: Optional[str] = None) -> Order:
        if not note or not note.strip():
            raise OrderServiceException("Note cannot be empty")
        order = self.get(order_id)
        data = dict(order.data or {})
        notes = list(data.get("notes", []))
        notes.append(
            {
                "note": note.strip(),
                "author": author or "admin",
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        data["notes"] = notes
        order.data = data
        self.db.commit()
        self.db.refresh(order)
        return order

    def serialize(self, order: Order) -> Dict:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "status": order.status,
            "payment_status": order.payment_status,
            "subtotal": float(order.subtotal),
            "discount_amount": float(order.discount_amount),
            "shipping_amount": float(order.shipping_amount),
            "tax_amount": float(order.tax_amount),
            "total_amount": float(order.total_amount),
            "currency": order.currency,
            "shipping_address": order.shipping_address,
            "shipping_carrier": order.shipping_carrier,
            "tracking_number": order.tracking_number,
            "tracking_url": tracking_url(order.shipping_carrier, order.tracking_number),
            "items": [
                {
                    "product_name": it.product_name,
                    "variant": it.variant_label,
                    "quantity": it.quantity,
                    "unit_price": float(it.unit_price),
                    "total_price": float(it.total_price),
                }
                for it in order.items
            ],
        }
