from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, PositiveInt
from pydantic.config import ConfigDict


class UserRead(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    balance: Decimal = Decimal("0.00")
    multiplier: int = 1

    model_config = ConfigDict(from_attributes=True)


class LeaderboardEntry(BaseModel):
    username: str
    balance: Decimal

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None)
    # None price: listed but not purchasable; None quantity: unlimited stock
    price: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    quantity: Optional[int] = Field(default=None, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    quantity: Optional[int] = Field(default=None, ge=0)


class ProductRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def purchasable(self) -> bool:
        return self.price is not None and self.quantity != 0


class ProductPage(BaseModel):
    items: List[ProductRead] = []
    page: int
    page_size: int
    total: int
    total_pages: int
    order_by: str
    direction: str
    search_term: str = ""


class CartLine(BaseModel):
    product_id: int
    name: str
    description: Optional[str] = None
    unit_price: Optional[Decimal] = None
    quantity: PositiveInt
    # stock left on the shelf after this reservation; None means unlimited
    remaining_stock: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price or Decimal("0")) * self.quantity


class CheckoutResult(BaseModel):
    success: bool
    message: str = ""
    total: Decimal = Decimal("0.00")


class PurchaseRead(BaseModel):
    product_id: int
    quantity: int
    purchased_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PurchaseSummary(BaseModel):
    product_name: str
    quantity: int


class SignupResult(BaseModel):
    user_id: Optional[int] = None
    messages: List[str] = []

    @property
    def ok(self) -> bool:
        return self.user_id is not None and not self.messages
