"""Data access: one function per query shape, each taking an explicit Session.

Callers own the transaction (see `Database.session()`); nothing here commits.
All filters are ORM expressions, so every value reaches the driver as a bound
parameter.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from . import models
from .utils import escape_like

# Columns the catalog may be sorted by; anything else is rejected upstream
SORTABLE_COLUMNS = {
    "id": models.Product.id,
    "name": models.Product.name,
    "description": models.Product.description,
    "price": models.Product.price,
    "quantity": models.Product.quantity,
}


# -------------------- users --------------------

def get_user(db: Session, user_id: int, for_update: bool = False) -> models.User | None:
    q = db.query(models.User).filter(models.User.id == user_id)
    if for_update:
        q = q.with_for_update()
    return q.first()


def get_user_by_username(db: Session, username: str, for_update: bool = False) -> models.User | None:
    q = db.query(models.User).filter(models.User.username == username)
    if for_update:
        q = q.with_for_update()
    return q.first()


def insert_user(db: Session, username: str, email: Optional[str], password_hash: str) -> models.User:
    user = models.User(username=username, email=email, password_hash=password_hash, balance=Decimal("0"), multiplier=1)
    db.add(user)
    db.flush()
    return user


def top_users_by_balance(db: Session, limit: int) -> List[models.User]:
    return (
        db.query(models.User)
        .order_by(models.User.balance.desc(), models.User.username)
        .limit(limit)
        .all()
    )


def debit_balance(db: Session, user_id: int, amount: Decimal) -> int:
    """Conditional debit; 0 rows affected means the balance was too low."""
    return (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.balance >= amount)
        .update({models.User.balance: models.User.balance - amount}, synchronize_session=False)
    )


def credit_balance(db: Session, user_id: int, amount: Decimal) -> int:
    return (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update({models.User.balance: models.User.balance + amount}, synchronize_session=False)
    )


def raise_multiplier(db: Session, user_id: int, bonus: int) -> int:
    return (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update({models.User.multiplier: models.User.multiplier + bonus}, synchronize_session=False)
    )


# -------------------- roles --------------------

def get_role_by_name(db: Session, name: str) -> models.Role | None:
    return db.query(models.Role).filter(models.Role.name == name).first()


def insert_role(db: Session, name: str) -> models.Role:
    role = models.Role(name=name)
    db.add(role)
    db.flush()
    return role


def get_user_role(db: Session, user_id: int, role_id: int) -> models.UserRole | None:
    return (
        db.query(models.UserRole)
        .filter(models.UserRole.user_id == user_id, models.UserRole.role_id == role_id)
        .first()
    )


def insert_user_role(db: Session, user_id: int, role_id: int) -> models.UserRole:
    link = models.UserRole(user_id=user_id, role_id=role_id)
    db.add(link)
    db.flush()
    return link


def delete_user_role(db: Session, user_id: int, role_id: int) -> int:
    return (
        db.query(models.UserRole)
        .filter(models.UserRole.user_id == user_id, models.UserRole.role_id == role_id)
        .delete(synchronize_session=False)
    )


def delete_user_roles(db: Session, user_id: int) -> int:
    return db.query(models.UserRole).filter(models.UserRole.user_id == user_id).delete(synchronize_session=False)


def role_names_for_user(db: Session, user_id: int) -> List[str]:
    rows = (
        db.query(models.Role.name)
        .join(models.UserRole, models.UserRole.role_id == models.Role.id)
        .filter(models.UserRole.user_id == user_id)
        .all()
    )
    return [r[0] for r in rows]


# -------------------- products --------------------

def get_product(db: Session, product_id: int, for_update: bool = False) -> models.Product | None:
    q = db.query(models.Product).filter(models.Product.id == product_id)
    if for_update:
        q = q.with_for_update()
    return q.first()


def product_search_query(db: Session, term: str, include_unlisted: bool) -> Query:
    q = db.query(models.Product)
    if term:
        like = f"%{escape_like(term.lower())}%"
        q = q.filter(
            or_(
                func.lower(models.Product.name).like(like, escape="\\"),
                func.lower(func.coalesce(models.Product.description, "")).like(like, escape="\\"),
            )
        )
    if not include_unlisted:
        q = q.filter(
            models.Product.price.isnot(None),
            or_(models.Product.quantity.is_(None), models.Product.quantity != 0),
        )
    return q


def search_products(
    db: Session,
    term: str,
    include_unlisted: bool,
    order_by: str,
    descending: bool,
    offset: int,
    limit: int,
) -> Tuple[int, List[models.Product]]:
    q = product_search_query(db, term, include_unlisted)
    total = q.count()
    column = SORTABLE_COLUMNS[order_by]
    ordering = column.desc() if descending else column.asc()
    rows = q.order_by(ordering, models.Product.id.asc()).offset(offset).limit(limit).all()
    return total, rows


def insert_product(db: Session, **fields) -> models.Product:
    product = models.Product(**fields)
    db.add(product)
    db.flush()
    return product


def decrease_stock(db: Session, product_id: int, amount: int) -> int:
    """Conditional decrement; 0 rows affected means not enough stock (or unlimited)."""
    return (
        db.query(models.Product)
        .filter(
            models.Product.id == product_id,
            models.Product.quantity.isnot(None),
            models.Product.quantity >= amount,
        )
        .update({models.Product.quantity: models.Product.quantity - amount}, synchronize_session=False)
    )


def increase_stock(db: Session, product_id: int, amount: int) -> int:
    return (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.quantity.isnot(None))
        .update({models.Product.quantity: models.Product.quantity + amount}, synchronize_session=False)
    )


def count_product_references(db: Session, product_id: int) -> int:
    in_carts = db.query(func.count(models.CartItem.id)).filter(models.CartItem.product_id == product_id).scalar()
    in_purchases = db.query(func.count(models.Purchase.id)).filter(models.Purchase.product_id == product_id).scalar()
    return int(in_carts or 0) + int(in_purchases or 0)


def delete_product_references(db: Session, product_id: int) -> int:
    removed = db.query(models.CartItem).filter(models.CartItem.product_id == product_id).delete(synchronize_session=False)
    removed += db.query(models.Purchase).filter(models.Purchase.product_id == product_id).delete(synchronize_session=False)
    return removed


def delete_product(db: Session, product_id: int) -> int:
    return db.query(models.Product).filter(models.Product.id == product_id).delete(synchronize_session=False)


# -------------------- cart --------------------

def get_cart_item(db: Session, user_id: int, product_id: int, for_update: bool = False) -> models.CartItem | None:
    q = db.query(models.CartItem).filter(
        models.CartItem.user_id == user_id, models.CartItem.product_id == product_id
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


def insert_cart_item(db: Session, user_id: int, product_id: int, quantity: int) -> models.CartItem:
    item = models.CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
    db.add(item)
    db.flush()
    return item


def cart_rows(db: Session, user_id: int, for_update: bool = False) -> List[Tuple[models.CartItem, models.Product]]:
    q = (
        db.query(models.CartItem, models.Product)
        .join(models.Product, models.Product.id == models.CartItem.product_id)
        .filter(models.CartItem.user_id == user_id)
        .order_by(models.CartItem.id)
    )
    if for_update:
        q = q.with_for_update()
    return q.all()


def delete_cart_item(db: Session, item_id: int) -> int:
    return db.query(models.CartItem).filter(models.CartItem.id == item_id).delete(synchronize_session=False)


def delete_cart(db: Session, user_id: int) -> int:
    return db.query(models.CartItem).filter(models.CartItem.user_id == user_id).delete(synchronize_session=False)


# -------------------- purchases --------------------

def insert_purchases(db: Session, user_id: int, lines: Sequence[Tuple[int, int]]) -> List[models.Purchase]:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    purchases = [
        models.Purchase(user_id=user_id, product_id=product_id, quantity=quantity, purchased_at=now)
        for product_id, quantity in lines
    ]
    db.add_all(purchases)
    db.flush()
    return purchases


def purchases_for_user(db: Session, user_id: int) -> List[models.Purchase]:
    return (
        db.query(models.Purchase)
        .filter(models.Purchase.user_id == user_id)
        .order_by(models.Purchase.purchased_at, models.Purchase.id)
        .all()
    )


def purchase_totals_by_product_name(db: Session, user_id: int) -> List[Tuple[str, int]]:
    rows = (
        db.query(models.Product.name, func.sum(models.Purchase.quantity))
        .join(models.Purchase, models.Purchase.product_id == models.Product.id)
        .filter(models.Purchase.user_id == user_id)
        .group_by(models.Product.name)
        .order_by(models.Product.name)
        .all()
    )
    return [(name, int(total or 0)) for name, total in rows]


def delete_purchases(db: Session, user_id: int) -> int:
    return db.query(models.Purchase).filter(models.Purchase.user_id == user_id).delete(synchronize_session=False)
