# provide dataclass models

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Tuple, Union


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: Literal["admin", "user"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class Product:
    pid: int
    name: str
    price: Decimal
    stock_count: int
    image: str = ""


@dataclass(frozen=True)
class CartLine:
    owner: Union[int, str]  # user id for the persistent cart, session id for the ephemeral one
    pid: int
    qty: int
    name: str
    unit_price: Decimal
    image: str = ""
    available: int = 0  # snapshot for UI hints, never used for checkout decisions

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.qty


@dataclass(frozen=True)
class OrderHistoryEntry:
    id: int
    user_id: int
    pid: int
    qty: int
    price: Decimal  # qty * unit price at purchase time
    order_date: datetime
    review: Optional[str] = None
    rating: Optional[int] = None


@dataclass(frozen=True)
class Review:
    review_id: int
    user_id: int
    pid: int
    rating: int  # 0 means unset
    text: str
    review_date: datetime


@dataclass(frozen=True)
class InvoiceLine:
    pid: int
    name: str
    qty: int
    amount: Decimal


@dataclass(frozen=True)
class Invoice:
    lines: Tuple[InvoiceLine, ...]
    total: Decimal
    created_at: datetime = field(default_factory=datetime.now)
