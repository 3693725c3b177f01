import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from storefront.models.cart import Cart
from storefront.models.cart_item import CartItem
from storefront.pricing.rules import CartLine, cart_subtotal
from storefront.repositories.cart_repo import CartRepository
from storefront.repositories.product_repo import ProductRepository
from storefront.utils.log import get_logger

log = get_logger("cart")


class CartServiceException(Exception):
    pass


class CartService:
    def __init__(self, db: Session):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.product_repo = ProductRepository(db)

    def get_or_create_cart(
        self, cart_uuid: Optional[str] = None, user_id: Optional[str] = None
    ) -> Cart:
        """
        A signed-in shopper gets their open user cart; anyone else gets the guest
        cart for cart_uuid. A cart is never keyed by both.
        """
        if user_id:
            c = self.cart_repo.get_by_user(user_id)
            if c:
                return c
            c = self.cart_repo.create_user_cart(user_id)
            self.db.commit()
            return c
        if cart_uuid:
            c = self.cart_repo.get_by_uuid(cart_uuid)
            if c:
                return c
        c = self.cart_repo.create_guest_cart(cart_uuid or uuid.uuid4().hex)
        self.db.commit()
        return c

    def _check_stock(self, variant_id: int, qty: int):
        variant = self.product_repo.get_variant(variant_id)
        if not variant or not variant.is_active or not variant.product.active:
            raise CartServiceException("Product variant not found")
        if qty <= 0:
            raise CartServiceException("Quantity must be positive")
        if qty > (variant.inventory_count or 0):
            raise CartServiceException(
                f"Only {variant.inventory_count} of {variant.product.name} ({variant.label}) available"
            )
        return variant

    def add_item(self, cart: Cart, variant_id: int, qty: int) -> CartItem:
        existing = self.cart_repo.find_item(cart, variant_id)
        wanted = qty + (existing.quantity if existing else 0)
        variant = self._check_stock(variant_id, wanted)
        item = self.cart_repo.add_or_update_item(
            cart, variant.product_id, variant.id, wanted, variant.unit_price
        )
        self.db.commit()
        return item

    def update_quantity(self, cart: Cart, item_id: int, qty: int) -> Optional[CartItem]:
        """Sets an absolute quantity; zero removes the line."""
        item = self.cart_repo.get_item(cart, item_id)
        if not item:
            raise CartServiceException("Cart item not found")
        if qty == 0:
            self.remove_item(cart, item_id)
            return None
        self._check_stock(item.variant_id, qty)
        item.quantity = qty
        self.db.commit()
        return item

    def remove_item(self, cart: Cart, item_id: int):
        if not self.cart_repo.remove_item(cart, item_id):
            raise CartServiceException("Cart item not found")
        self.db.commit()

    def clear(self, cart: Cart):
        self.cart_repo.clear(cart)
        self.db.commit()

    def merge_guest_into_user(self, cart_uuid: str, user_id: str) -> Cart:
        user_cart = self.get_or_create_cart(user_id=user_id)
        guest_cart = self.cart_repo.get_by_uuid(cart_uuid) if cart_uuid else None
        if not guest_cart or guest_cart.id == user_cart.id:
            return user_cart
        self.cart_repo.merge_guest_into_user(guest_cart, user_cart)
        self.db.commit()
        log.info(f"Merged guest cart {cart_uuid} into cart of user={user_id}")
        return user_cart

    def lines(self, cart: Cart) -> List[CartLine]:
        out = []
        for it in cart.items:
            category_id = it.variant.product.category_id if it.variant else None
            out.append(
                CartLine(
                    product_id=str(it.product_id),
                    variant_id=str(it.variant_id),
                    quantity=it.quantity,
                    unit_price=Decimal(it.unit_price),
                    category_id=str(category_id) if category_id is not None else None,
                )
            )
        return out

    def subtotal(self, cart: Cart) -> Decimal:
        return cart_subtotal(self.lines(cart))
