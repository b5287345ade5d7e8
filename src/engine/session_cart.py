from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from db.models import CartLine, Product
from engine.errors import NotFound
from engine.interfaces import Owner


class SessionCartStore:
    """
    Ephemeral cart kept in process memory, keyed by session id.

    Lines keep insertion order. The store never looks at stock or at the
    catalog, so a new line needs the product passed in; after that the
    name, price and image captured on first add stay put.
    """

    def __init__(self) -> None:
        self._carts: Dict[Owner, Dict[int, CartLine]] = {}

    async def get(self, owner: Owner) -> List[CartLine]:
        return list(self._carts.get(owner, {}).values())

    async def upsert_quantity(
        self, owner: Owner, pid: int, qty: int, product: Optional[Product] = None
    ) -> None:
        existing = self._carts.get(owner, {}).get(pid)
        if existing is None:
            if product is None:
                raise NotFound("product", pid)
            self._carts.setdefault(owner, {})[pid] = CartLine(
                owner=owner,
                pid=pid,
                qty=qty,
                name=product.name,
                unit_price=product.price,
                image=product.image,
                available=product.stock_count,
            )
        elif product is None:
            self._carts[owner][pid] = replace(existing, qty=qty)
        else:
            self._carts[owner][pid] = replace(
                existing, qty=qty, available=product.stock_count
            )

    async def remove(self, owner: Owner, pid: int) -> None:
        lines = self._carts.get(owner)
        if lines is None:
            return
        lines.pop(pid, None)
        if not lines:
            del self._carts[owner]

    async def clear(self, owner: Owner) -> None:
        self._carts.pop(owner, None)
