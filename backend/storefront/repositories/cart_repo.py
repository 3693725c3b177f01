from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from storefront.models.cart import Cart
from storefront.models.cart_item import CartItem


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_uuid(self, cart_uuid: str) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.cart_uuid == cart_uuid, Cart.checked_out == False).first()

    def get_by_user(self, user_id: str) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.user_id == user_id, Cart.checked_out == False).first()

    def create_guest_cart(self, cart_uuid: str) -> Cart:
        c = Cart(cart_uuid=cart_uuid)
        self.db.add(c)
        self.db.flush()
        return c

    def create_user_cart(self, user_id: str) -> Cart:
        c = Cart(user_id=user_id)
        self.db.add(c)
        self.db.flush()
        return c

    def find_item(self, cart: Cart, variant_id: int) -> Optional[CartItem]:
        return next((it for it in cart.items if it.variant_id == variant_id), None)

    def add_or_update_item(
        self, cart: Cart, product_id: int, variant_id: int, qty: int, unit_price: Decimal
    ) -> CartItem:
        item = self.find_item(cart, variant_id)
        if item:
            item.quantity = qty
            item.unit_price = unit_price
        else:
            item = CartItem(
                cart_id=cart.id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=qty,
                unit_price=unit_price,
            )
            self.db.add(item)
            cart.items.append(item)
        self.db.flush()
        return item

    def get_item(self, cart: Cart, item_id: int) -> Optional[CartItem]:
        return self.db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()

    def remove_item(self, cart: Cart, item_id: int) -> bool:
        it = self.get_item(cart, item_id)
        if not it:
            return False
        cart.items.remove(it)
        self.db.delete(it)
        self.db.flush()
        return True

    def clear(self, cart: Cart):
        for it in list(cart.items):
            cart.items.remove(it)
            self.db.delete(it)
        self.db.flush()

    def merge_guest_into_user(self, guest_cart: Cart, user_cart: Cart) -> Cart:
        # quantities add up; the guest cart disappears so a shopper never owns two carts
        for git in list(guest_cart.items):
            found = self.find_item(user_cart, git.variant_id)
            if found:
                found.quantity += git.quantity
                guest_cart.items.remove(git)
                self.db.delete(git)
            else:
                guest_cart.items.remove(git)
                user_cart.items.append(git)
        self.db.delete(guest_cart)
        self.db.flush()
        return user_cart
