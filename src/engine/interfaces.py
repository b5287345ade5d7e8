"""
Capabilities the engine is written against.

The SQLite stores in the db package and the in-memory session cart both
satisfy these; tests substitute their own fakes where a failure has to be
injected.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Union

from db.models import CartLine, OrderHistoryEntry, Product, Review

Owner = Union[int, str]


class StockLedger(Protocol):
    async def get_product(self, pid: int) -> Optional[Product]: ...

    async def decrease(self, pid: int, amount: int) -> None:
        """Atomically take `amount` off stock, or raise InsufficientStock/NotFound."""
        ...


class CartStore(Protocol):
    async def get(self, owner: Owner) -> List[CartLine]: ...

    async def upsert_quantity(
        self, owner: Owner, pid: int, qty: int, product: Optional[Product] = None
    ) -> None: ...

    async def remove(self, owner: Owner, pid: int) -> None: ...

    async def clear(self, owner: Owner) -> None: ...


class OrderHistoryLedger(Protocol):
    async def append(
        self,
        user_id: int,
        pid: int,
        qty: int,
        price: Decimal,
        order_date: Optional[datetime] = None,
    ) -> int: ...

    async def get(self, order_id: int) -> Optional[OrderHistoryEntry]: ...

    async def list_by_user(self, user_id: int) -> List[OrderHistoryEntry]: ...

    async def list_all(self) -> List[OrderHistoryEntry]: ...

    async def set_review(self, order_id: int, text: str) -> None: ...

    async def set_rating(self, order_id: int, rating: int) -> None: ...


class ReviewStore(Protocol):
    async def find(self, user_id: int, pid: int) -> Optional[Review]: ...

    async def insert(
        self, user_id: int, pid: int, rating: int, text: str, when: datetime
    ) -> int:
        """Create a review; raise ReviewExists if (user_id, pid) already has one."""
        ...

    async def update(self, review_id: int, rating: int, text: str, when: datetime) -> None: ...

    async def list_by_user(self, user_id: int) -> List[Review]: ...

    async def list_all(self) -> List[Review]: ...
