import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Set

from . import crud
from .auth import dummy_verify, hash_password, verify_password
from .db import Database
from .errors import Conflict, InvalidArgument, NotFound
from .schemas import LeaderboardEntry, UserRead
from .utils import round_amount

logger = logging.getLogger(__name__)

USER_ROLE = "user"
ADMIN_ROLE = "admin"
DEFAULT_ROLES = (USER_ROLE, ADMIN_ROLE)


class CredentialStore:
    """Owns user identity records and their password hashes."""

    def __init__(self, database: Database):
        self._db = database

    def create_user(self, username: str, email: Optional[str], password: str, roles: Sequence[str] = ()) -> int:
        """Insert the user and link `roles` in the same transaction."""
        if not username or not password:
            raise InvalidArgument("username and password must be provided")
        # hash outside the transaction: bcrypt is deliberately slow
        password_hash = hash_password(password)
        with self._db.session() as db:
            if crud.get_user_by_username(db, username):
                raise Conflict("Username is already taken")
            user = crud.insert_user(db, username, email, password_hash)
            user_id = user.id
            for role_name in roles:
                role = crud.get_role_by_name(db, role_name)
                if not role:
                    raise NotFound(f"role {role_name!r} not found")
                crud.insert_user_role(db, user_id, role.id)
        logger.info("user created: %s (id=%s)", username, user_id)
        return user_id

    def verify_credentials(self, username: str, password: str) -> bool:
        if not username or not password:
            return False
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username)
            stored = user.password_hash if user else None
        if stored is None:
            dummy_verify()
            return False
        return verify_password(password, stored)

    def update_password(self, username: str, new_password: str) -> None:
        if not new_password:
            raise InvalidArgument("new password must be provided")
        password_hash = hash_password(new_password)
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username, for_update=True)
            if not user:
                raise NotFound(f"user {username!r} not found")
            user.password_hash = password_hash

    def update_email(self, username: str, email: str) -> None:
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username, for_update=True)
            if not user:
                raise NotFound(f"user {username!r} not found")
            user.email = email

    def delete_user(self, username: str) -> None:
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username)
            if not user:
                raise NotFound(f"user {username!r} not found")
            db.delete(user)
        logger.info("user deleted: %s", username)

    def get_user(self, username: str) -> UserRead | None:
        if not username:
            return None
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username)
            return UserRead.model_validate(user) if user else None

    def user_exists(self, username: str) -> bool:
        return self.get_user(username) is not None

    def credit_balance(self, username: str, amount: Decimal) -> Decimal:
        amount = round_amount(Decimal(amount))
        if amount < 0:
            raise InvalidArgument("amount must be non-negative")
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username, for_update=True)
            if not user:
                raise NotFound(f"user {username!r} not found")
            crud.credit_balance(db, user.id, amount)
            db.refresh(user)
            return user.balance

    def top_users(self, limit: int = 10) -> List[LeaderboardEntry]:
        if limit < 1:
            raise InvalidArgument("limit must be positive")
        with self._db.session() as db:
            return [LeaderboardEntry.model_validate(u) for u in crud.top_users_by_balance(db, limit)]


class RoleStore:
    """Associates users with named roles."""

    def __init__(self, database: Database):
        self._db = database

    def ensure_roles(self, *names: str) -> None:
        with self._db.session() as db:
            for name in names or DEFAULT_ROLES:
                if not crud.get_role_by_name(db, name):
                    crud.insert_role(db, name)

    def _resolve(self, db, user_id: int, role_name: str):
        user = crud.get_user(db, user_id)
        if not user:
            raise NotFound(f"user {user_id} not found")
        role = crud.get_role_by_name(db, role_name)
        if not role:
            raise NotFound(f"role {role_name!r} not found")
        return user, role

    def grant_role(self, user_id: int, role_name: str) -> None:
        with self._db.session() as db:
            user, role = self._resolve(db, user_id, role_name)
            if crud.get_user_role(db, user.id, role.id):
                return
            crud.insert_user_role(db, user.id, role.id)
        logger.info("role %s granted to user %s", role_name, user_id)

    def revoke_role(self, user_id: int, role_name: str) -> None:
        with self._db.session() as db:
            user, role = self._resolve(db, user_id, role_name)
            removed = crud.delete_user_role(db, user.id, role.id)
        if removed:
            logger.info("role %s revoked from user %s", role_name, user_id)

    def list_roles(self, user_id: Optional[int]) -> Set[str]:
        if user_id is None:
            return set()
        with self._db.session() as db:
            return set(crud.role_names_for_user(db, user_id))

    def has_role(self, user_id: Optional[int], role_name: str) -> bool:
        return role_name in self.list_roles(user_id)

    def roles_for_username(self, username: Optional[str]) -> Set[str]:
        if not username:
            return set()
        with self._db.session() as db:
            user = crud.get_user_by_username(db, username)
            if not user:
                return set()
            return set(crud.role_names_for_user(db, user.id))
