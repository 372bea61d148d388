import logging
from decimal import Decimal
from typing import List, Optional

from . import crud
from .db import Database
from .errors import NotFound
from .schemas import CheckoutResult, PurchaseRead, PurchaseSummary
from .utils import parse_product_perk, round_amount

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS = "Insufficient funds"
EMPTY_CART = "Your cart is empty"


class CheckoutLedger:
    """Turns a cart into purchases against the user's balance."""

    def __init__(self, database: Database):
        self._db = database

    def checkout(self, user_id: int, advisory_total: Optional[Decimal] = None) -> CheckoutResult:
        """Debit the cart total, record one purchase per line and empty the cart.

        The total is always recomputed from the cart; `advisory_total` is what
        the client displayed and is only compared for logging. Stock is not
        touched: it was reserved when the lines were added.
        """
        with self._db.session() as db:
            user = crud.get_user(db, user_id, for_update=True)
            if not user:
                raise NotFound(f"user {user_id} not found")

            rows = crud.cart_rows(db, user_id, for_update=True)
            if not rows:
                return CheckoutResult(success=False, message=EMPTY_CART)
            for item, product in rows:
                if product.price is None:
                    return CheckoutResult(success=False, message=f"{product.name} is no longer for sale")

            total = round_amount(sum((Decimal(product.price) * item.quantity for item, product in rows), Decimal("0")))
            advisory = Decimal(advisory_total) if advisory_total is not None else None
            # non-finite client totals would make quantize raise
            if advisory is not None and (not advisory.is_finite() or round_amount(advisory) != total):
                logger.warning(
                    "checkout for user %s: client total %s differs from cart total %s", user_id, advisory_total, total
                )

            if user.balance < total or not crud.debit_balance(db, user_id, total):
                logger.info("checkout refused for user %s: balance %s < %s", user_id, user.balance, total)
                return CheckoutResult(success=False, message=INSUFFICIENT_FUNDS, total=total)

            crud.insert_purchases(db, user_id, [(item.product_id, item.quantity) for item, _ in rows])
            for item, product in rows:
                perk, value = parse_product_perk(product.name)
                if perk == "multiplier":
                    crud.raise_multiplier(db, user_id, value * item.quantity)
            crud.delete_cart(db, user_id)

        logger.info("checkout completed for user %s: %s lines, total %s", user_id, len(rows), total)
        return CheckoutResult(success=True, message="Purchase successful", total=total)

    def purchases(self, user_id: int) -> List[PurchaseRead]:
        with self._db.session() as db:
            return [PurchaseRead.model_validate(p) for p in crud.purchases_for_user(db, user_id)]

    def purchase_history(self, user_id: int) -> List[PurchaseSummary]:
        """Purchases aggregated per product name, as shown on the account page."""
        with self._db.session() as db:
            return [
                PurchaseSummary(product_name=name, quantity=quantity)
                for name, quantity in crud.purchase_totals_by_product_name(db, user_id)
            ]
