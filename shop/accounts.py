import logging
from decimal import Decimal
from typing import List, Optional

from . import crud
from .checkout import CheckoutLedger
from .db import Database
from .errors import Conflict, NotFound
from .schemas import PurchaseSummary, SignupResult, UserRead
from .users import USER_ROLE, CredentialStore, RoleStore
from .utils import validate_account_update, validate_signup

logger = logging.getLogger(__name__)


class AccountService:
    """Account lifecycle built on top of the credential and role stores."""

    def __init__(
        self,
        database: Database,
        credentials: CredentialStore,
        roles: RoleStore,
        ledger: CheckoutLedger,
    ):
        self._db = database
        self.credentials = credentials
        self.roles = roles
        self.ledger = ledger

    def signup(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        confirm_password: Optional[str],
    ) -> SignupResult:
        taken = bool(username) and self.credentials.user_exists(username)
        messages = validate_signup(username, email, password, confirm_password, taken)
        if messages:
            return SignupResult(messages=messages)
        try:
            user_id = self.credentials.create_user(username, email, password, roles=(USER_ROLE,))
        except Conflict:
            # lost a race with another signup for the same name
            return SignupResult(
                messages=["Fill in all fields correctly:", "- Username is already taken, please choose a different one"]
            )
        return SignupResult(user_id=user_id)

    def update_account(
        self,
        username: str,
        email: Optional[str],
        password: Optional[str],
        confirm_password: Optional[str],
    ) -> List[str]:
        messages = validate_account_update(email, password, confirm_password)
        if messages:
            return messages
        if email:
            self.credentials.update_email(username, email)
        if password:
            self.credentials.update_password(username, password)
        return []

    def delete_account(self, username: str) -> None:
        """Remove the user with its role links, cart lines and purchases in one transaction.

        Cart reservations are not returned to stock.
        """
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username, for_update=True)
            if not user:
                raise NotFound(f"user {username!r} not found")
            crud.delete_user_roles(db, user.id)
            crud.delete_cart(db, user.id)
            crud.delete_purchases(db, user.id)
            db.delete(user)
        logger.info("account deleted: %s", username)

    def details(self, username: str) -> UserRead:
        user = self.credentials.get_user(username)
        if not user:
            raise NotFound(f"user {username!r} not found")
        return user

    def purchase_history(self, username: str) -> List[PurchaseSummary]:
        return self.ledger.purchase_history(self.details(username).id)

    def earn(self, username: str) -> Decimal:
        """One moneymaker click: credit the user's multiplier in whole units."""
        user = self.details(username)
        return self.credentials.credit_balance(username, Decimal(user.multiplier))
