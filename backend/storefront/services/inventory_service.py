import os
import tempfile
from typing import Dict, Iterable, List, Optional

from filelock import FileLock, Timeout
from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.models.order import Order
from storefront.models.product import ProductVariant
from storefront.utils.log import get_logger
from storefront.utils.transactions import smart_transaction

log = get_logger("inventory")


class InventoryException(Exception):
    pass


class InventoryService:
    def __init__(self, db: Session, lock_timeout: Optional[int] = None):
        self.db = db
        self.lock_timeout = lock_timeout or settings.INVENTORY_LOCK_TIMEOUT_SECONDS

    def _lock(self, variant_id: int) -> FileLock:
        locks_dir = os.path.join(tempfile.gettempdir(), "storefront_locks")
        os.makedirs(locks_dir, exist_ok=True)
        return FileLock(os.path.join(locks_dir, f"variant_{variant_id}.lock"))

    def available_quantity(self, variant_id: int) -> int:
        v = self.db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
        if not v:
            raise InventoryException("Variant not found")
        return max(0, v.inventory_count or 0)

    def check_lines(self, items: Iterable[Dict]) -> List[Dict]:
        """
        items: list of {variant_id, quantity}
        Returns one issue per line that cannot be fulfilled; empty when all lines are fine.
        """
        issues = []
        for it in items:
            variant_id = int(it["variant_id"])
            qty = int(it["quantity"])
            v = (
                self.db.query(ProductVariant)
                .filter(ProductVariant.id == variant_id)
                .first()
            )
            if not v or not v.is_active or not v.product or not v.product.active:
                issues.append(
                    {
                        "variant_id": variant_id,
                        "product_name": v.product.name if v and v.product else None,
                        "variant": v.label if v else None,
                        "requested": qty,
                        "available": 0,
                        "message": "Variant not found",
                    }
                )
                continue
            available = v.inventory_count or 0
            if available < qty:
                issues.append(
                    {
                        "variant_id": variant_id,
                        "product_name": v.product.name,
                        "variant": v.label,
                        "requested": qty,
                        "available": available,
                        "message": "Out of stock"
                        if available == 0
                        else f"Only {available} available",
                    }
                )
        return issues

    def _adjust(self, variant_id: int, delta: int) -> bool:
        """
        Add `delta` to the variant's inventory. A decrement only succeeds when enough
        stock is left; the check and the write are one conditional UPDATE.
        """
        stmt = update(ProductVariant).where(ProductVariant.id == variant_id)
        if delta < 0:
            stmt = stmt.where(ProductVariant.inventory_count >= -delta)
        res = self.db.execute(
            stmt.values(inventory_count=ProductVariant.inventory_count + delta)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def commit_order(self, order: Order) -> List[Dict]:
        """
        Take the order's quantities out of stock. Runs after payment, so a shortfall
        is recorded on the order and logged for an operator instead of raised.
        """
        self.db.flush()
        shortfalls = []
        for item in order.items:
            try:
                with self._lock(item.variant_id).acquire(timeout=self.lock_timeout):
                    with smart_transaction(self.db):
                        ok = self._adjust(item.variant_id, -item.quantity)
            except Timeout:
                raise InventoryException("Could not acquire inventory lock; try again")
            if not ok:
                shortfalls.append(
                    {"variant_id": item.variant_id, "requested": item.quantity}
                )
        if shortfalls:
            log.warning(
                f"Order {order.order_number} confirmed with inventory shortfall: {shortfalls}"
            )
            data = dict(order.data or {})
            data["inventory_shortfall"] = shortfalls
            order.data = data
            self.db.flush()
        self.db.expire_all()
        return shortfalls

    def restock_order(self, order: Order):
        self.db.flush()
        for item in order.items:
            try:
                with self._lock(item.variant_id).acquire(timeout=self.lock_timeout):
                    with smart_transaction(self.db):
                        self._adjust(item.variant_id, item.quantity)
            except Timeout:
                raise InventoryException("Could not acquire inventory lock; try again")
        self.db.expire_all()
