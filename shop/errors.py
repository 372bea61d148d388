"""Error taxonomy shared by the core components.

Route handlers translate these into redirects or error pages; the core never
touches request/response objects.
"""


class ShopError(Exception):
    """Base class for expected failures raised by the core."""


class NotFound(ShopError):
    pass


class Conflict(ShopError):
    pass


class InvalidArgument(ShopError):
    pass


class OutOfStock(ShopError):
    def __init__(self, product_id: int, requested: int, available: int | None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"only {available} left in stock, requested {requested}")


class StoreUnavailable(ShopError):
    """The relational store could not be reached or failed mid-operation."""


class LoginRequired(Exception):
    """Raised by the access gate dependency; carries the login redirect."""

    def __init__(self, redirect_url: str):
        self.redirect_url = redirect_url
        super().__init__(redirect_url)
