from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List

from db.models import CartLine
from engine.errors import InsufficientStock, NotFound
from engine.interfaces import CartStore, Owner, StockLedger
from utils.logger import get_logger

_logger = get_logger(__name__)


def clamp_quantity(raw) -> int:
    """Turn form input into a cart quantity: missing or unparseable means 1, never below 1."""
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        return 1
    return max(1, qty)


@dataclass(frozen=True)
class CartSummary:
    lines: List[CartLine]
    total: Decimal


class CartService:
    """
    Cart mutations with the stock availability check in front of them.

    The check re-reads the product each time a quantity goes up. It only
    keeps the customer from queueing more than is on the shelf right now;
    checkout does not rely on it.
    """

    def __init__(self, store: CartStore, ledger: StockLedger) -> None:
        self.store = store
        self.ledger = ledger

    async def view(self, owner: Owner) -> CartSummary:
        lines = await self.store.get(owner)
        total = sum((line.amount for line in lines), Decimal("0"))
        return CartSummary(lines=lines, total=total)

    async def add(self, owner: Owner, pid: int, qty=1) -> CartLine:
        qty = clamp_quantity(qty)
        product = await self.ledger.get_product(pid)
        if product is None:
            raise NotFound("product", pid)

        lines = await self.store.get(owner)
        existing = next((line for line in lines if line.pid == pid), None)
        desired = (existing.qty if existing else 0) + qty
        if desired > product.stock_count:
            _logger.info(
                f"Rejected add of {qty} x {pid} for {owner}: wants {desired}, stock {product.stock_count}"
            )
            raise InsufficientStock(product.name, product.stock_count)

        await self.store.upsert_quantity(owner, pid, desired, product)
        return await self._line(owner, pid)

    async def update(self, owner: Owner, pid: int, qty) -> CartLine:
        """Set a line's quantity outright. The line must already be in the cart."""
        qty = clamp_quantity(qty)
        lines = await self.store.get(owner)
        if not any(line.pid == pid for line in lines):
            raise NotFound("cart item", pid)

        product = await self.ledger.get_product(pid)
        if product is None:
            raise NotFound("product", pid)
        if qty > product.stock_count:
            raise InsufficientStock(product.name, product.stock_count)

        await self.store.upsert_quantity(owner, pid, qty, product)
        return await self._line(owner, pid)

    async def remove(self, owner: Owner, pid: int) -> None:
        await self.store.remove(owner, pid)

    async def clear(self, owner: Owner) -> None:
        await self.store.clear(owner)

    async def _line(self, owner: Owner, pid: int) -> CartLine:
        for line in await self.store.get(owner):
            if line.pid == pid:
                return line
        raise NotFound("cart item", pid)
