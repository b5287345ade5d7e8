# src/db/products.py
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from db import models
from db.database import connect, to_decimal
from engine.errors import InsufficientStock, NotFound, ValidationFailure
from utils.logger import get_logger

_logger = get_logger(__name__)


def _row_to_product(row) -> models.Product:
    return models.Product(
        pid=int(row[0]),
        name=row[1],
        price=to_decimal(row[2]),
        stock_count=int(row[3]),
        image=row[4] or "",
    )


class SqliteStockLedger:
    """Product stock held in the products table.

    decrease() is the only place stock goes down during checkout. It is a
    single conditional UPDATE, so two connections racing for the last units
    can never both succeed.
    """

    async def get_product(self, pid: int) -> Optional[models.Product]:
        """Fetch a product by pid."""
        async with connect() as conn:
            cur = await conn.execute(
                "SELECT pid, name, price, stock_count, image FROM products WHERE pid = ?;",
                (pid,),
            )
            row = await cur.fetchone()
            await cur.close()
        if not row:
            return None
        return _row_to_product(row)

    async def list_products(self) -> List[models.Product]:
        async with connect() as conn:
            cur = await conn.execute(
                "SELECT pid, name, price, stock_count, image FROM products ORDER BY pid;"
            )
            rows = await cur.fetchall()
            await cur.close()
        return [_row_to_product(row) for row in rows]

    async def decrease(self, pid: int, amount: int) -> None:
        """
        Take `amount` units off the product's stock, only if that many are there.
        Raises InsufficientStock (nothing changed) or NotFound.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationFailure(f"Decrease amount must be a positive integer, got {amount!r}")

        async with connect() as conn:
            cur = await conn.execute(
                """
                UPDATE products
                SET stock_count = stock_count - ?
                WHERE pid = ?
                  AND stock_count >= ?;
                """,
                (amount, pid, amount),
            )
            updated = cur.rowcount
            await cur.close()
            await conn.commit()
            if updated > 0:
                _logger.debug(f"Stock of product {pid} decreased by {amount}")
                return

            # nothing matched: tell apart a missing product from a short one
            cur = await conn.execute(
                "SELECT name, stock_count FROM products WHERE pid = ?;", (pid,)
            )
            row = await cur.fetchone()
            await cur.close()

        if not row:
            raise NotFound("product", pid)
        _logger.info(
            f"Refused to decrease product {pid} by {amount}: only {row[1]} left"
        )
        raise InsufficientStock(row[0], int(row[1]))

    # ---------------------------
    # Administrative helpers
    # ---------------------------

    async def add_product(
        self, name: str, price: Decimal, stock_count: int, image: str = ""
    ) -> int:
        """Insert a product and return its pid."""
        if stock_count < 0:
            raise ValidationFailure("Stock count cannot be negative.")
        if to_decimal(price) < 0:
            raise ValidationFailure("Price cannot be negative.")
        async with connect() as conn:
            cur = await conn.execute(
                "INSERT INTO products(name, price, stock_count, image) VALUES (?, ?, ?, ?);",
                (name, to_decimal(price), stock_count, image),
            )
            pid = cur.lastrowid
            await cur.close()
            await conn.commit()
        return int(pid)

    async def update_price_stock(
        self,
        pid: int,
        new_price: Optional[Decimal],
        new_stock_count: Optional[int],
    ) -> bool:
        """
        Update price and/or stock_count (only provided fields). Return True if a row was updated.
        """
        if new_price is None and new_stock_count is None:
            return False
        if new_stock_count is not None and new_stock_count < 0:
            raise ValidationFailure("Stock count cannot be negative.")
        async with connect() as conn:
            res = await conn.execute(
                """
                UPDATE products
                SET price = COALESCE(?, price),
                    stock_count = COALESCE(?, stock_count)
                WHERE pid = ?;
                """,
                (
                    to_decimal(new_price) if new_price is not None else None,
                    new_stock_count,
                    pid,
                ),
            )
            updated = res.rowcount
            await res.close()
            await conn.commit()
        return updated > 0
