import logging
from decimal import Decimal
from typing import List

from . import crud
from .db import Database
from .errors import InvalidArgument, NotFound, OutOfStock
from .schemas import CartLine

logger = logging.getLogger(__name__)


class CartEngine:
    """Per-user cart lines with eager stock reservation.

    Adding a product takes its quantity off the shelf immediately; removing
    the line puts it back. Each operation runs in a single transaction so
    the cart row and the product stock never disagree.
    """

    def __init__(self, database: Database):
        self._db = database

    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> int:
        """Reserve `quantity` units and return the resulting line quantity."""
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise InvalidArgument("quantity must be a whole number")
        if quantity < 1:
            raise InvalidArgument("quantity must be > 0")

        with self._db.session() as db:
            if not crud.get_user(db, user_id):
                raise NotFound(f"user {user_id} not found")
            product = crud.get_product(db, product_id, for_update=True)
            if not product:
                raise NotFound(f"product {product_id} not found")
            if product.price is None:
                raise InvalidArgument(f"{product.name} is not for sale")
            if product.quantity is not None:
                available = product.quantity
                if quantity > available or not crud.decrease_stock(db, product_id, quantity):
                    raise OutOfStock(product_id, quantity, available)

            item = crud.get_cart_item(db, user_id, product_id, for_update=True)
            if item:
                item.quantity += quantity
            else:
                item = crud.insert_cart_item(db, user_id, product_id, quantity)
            db.flush()
            return item.quantity

    def remove_from_cart(self, user_id: int, product_id: int) -> int:
        """Drop the line and release its reservation; returns the released quantity."""
        with self._db.session() as db:
            item = crud.get_cart_item(db, user_id, product_id, for_update=True)
            if not item:
                raise NotFound(f"product {product_id} is not in the cart")
            released = item.quantity
            crud.delete_cart_item(db, item.id)
            crud.increase_stock(db, product_id, released)
            return released

    def get_cart_items(self, user_id: int) -> List[CartLine]:
        with self._db.session() as db:
            return [
                CartLine(
                    product_id=product.id,
                    name=product.name,
                    description=product.description,
                    unit_price=product.price,
                    quantity=item.quantity,
                    remaining_stock=product.quantity,
                )
                for item, product in crud.cart_rows(db, user_id)
            ]

    def cart_total(self, user_id: int) -> Decimal:
        return sum((line.line_total for line in self.get_cart_items(user_id)), Decimal("0.00"))

    def clear_cart(self, user_id: int) -> int:
        """Delete every line without restoring stock (checkout and account deletion only)."""
        with self._db.session() as db:
            return crud.delete_cart(db, user_id)
