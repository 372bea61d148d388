import logging
import math

from . import crud
from .config import get_settings
from .db import Database
from .errors import Conflict, InvalidArgument, NotFound
from .schemas import ProductCreate, ProductPage, ProductRead, ProductUpdate

logger = logging.getLogger(__name__)

DIRECTIONS = ("asc", "desc")


class ProductCatalog:
    """Product records: search with sort/pagination, stock adjustment and admin edits."""

    def __init__(self, database: Database, max_page_size: int | None = None):
        self._db = database
        self._max_page_size = max_page_size or get_settings().max_page_size

    def search(
        self,
        term: str = "",
        page: int = 1,
        page_size: int = 10,
        order_by: str = "name",
        direction: str = "asc",
        include_unlisted: bool = False,
    ) -> ProductPage:
        """Return one page of products matching `term` in name or description.

        The non-admin view (`include_unlisted=False`) hides products without a
        price and products whose stock is exactly zero. Pages are 1-indexed; a
        page past the end is empty rather than an error.
        """
        if order_by not in crud.SORTABLE_COLUMNS:
            raise InvalidArgument(f"cannot sort by {order_by!r}")
        direction = (direction or "asc").lower()
        if direction not in DIRECTIONS:
            raise InvalidArgument(f"unknown sort direction {direction!r}")
        if page is None or page < 1:
            raise InvalidArgument("page must be >= 1")
        if page_size is None or page_size < 1:
            raise InvalidArgument("page_size must be >= 1")
        page_size = min(page_size, self._max_page_size)
        term = (term or "").strip()

        with self._db.session() as db:
            total, rows = crud.search_products(
                db,
                term,
                include_unlisted,
                order_by,
                direction == "desc",
                offset=(page - 1) * page_size,
                limit=page_size,
            )
            items = [ProductRead.model_validate(r) for r in rows]
        return ProductPage(
            items=items,
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size),
            order_by=order_by,
            direction=direction,
            search_term=term,
        )

    def get_product(self, product_id: int) -> ProductRead:
        with self._db.session() as db:
            product = crud.get_product(db, product_id)
            if not product:
                raise NotFound(f"product {product_id} not found")
            return ProductRead.model_validate(product)

    def adjust_stock(self, product_id: int, delta: int) -> int:
        """Apply a stock change and return the number of rows affected.

        Decreases only apply when enough stock remains; unlimited-stock
        products ignore adjustments. Both cases report 0.
        """
        with self._db.session() as db:
            if not crud.get_product(db, product_id):
                raise NotFound(f"product {product_id} not found")
            if delta < 0:
                return crud.decrease_stock(db, product_id, -delta)
            if delta > 0:
                return crud.increase_stock(db, product_id, delta)
            return 0

    def create_product(self, data: ProductCreate) -> int:
        with self._db.session() as db:
            product = crud.insert_product(db, **data.model_dump())
            return product.id

    def update_product(self, product_id: int, data: ProductUpdate) -> ProductRead:
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and not changes["name"]:
            raise InvalidArgument("product name cannot be empty")
        with self._db.session() as db:
            product = crud.get_product(db, product_id, for_update=True)
            if not product:
                raise NotFound(f"product {product_id} not found")
            for field, value in changes.items():
                setattr(product, field, value)
            db.flush()
            return ProductRead.model_validate(product)

    def delete(self, product_id: int, force: bool = False) -> None:
        with self._db.session() as db:
            if not crud.get_product(db, product_id, for_update=True):
                raise NotFound(f"product {product_id} not found")
            references = crud.count_product_references(db, product_id)
            if references and not force:
                raise Conflict(f"product {product_id} is referenced by {references} cart or purchase rows")
            if references:
                crud.delete_product_references(db, product_id)
                logger.warning("forced delete of product %s removed %s references", product_id, references)
            crud.delete_product(db, product_id)
