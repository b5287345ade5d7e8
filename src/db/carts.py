# src/db/carts.py
from __future__ import annotations

from typing import List, Optional

from db import models
from db.database import connect, to_decimal
from engine.errors import NotFound


class SqliteCartStore:
    """Durable cart keyed by user id. Lines come back in insertion order."""

    async def get(self, owner: int) -> List[models.CartLine]:
        async with connect() as conn:
            cur = await conn.execute(
                """
                SELECT owner, pid, qty, name, unit_price, image, available
                FROM cart
                WHERE owner = ?
                ORDER BY rowid;
                """,
                (owner,),
            )
            rows = await cur.fetchall()
            await cur.close()
        return [
            models.CartLine(
                owner=row[0],
                pid=int(row[1]),
                qty=int(row[2]),
                name=row[3],
                unit_price=to_decimal(row[4]),
                image=row[5] or "",
                available=int(row[6]),
            )
            for row in rows
        ]

    async def upsert_quantity(
        self,
        owner: int,
        pid: int,
        qty: int,
        product: Optional[models.Product] = None,
    ) -> None:
        """
        Set the quantity of (owner, pid), creating the line if needed.

        A new line takes its name, price and image from product (or from the
        products table when product is None). An existing line keeps the ones
        captured when it was first added; product only refreshes its stock
        snapshot. Raises NotFound when a new line names an unknown product.
        """
        if product is None:
            async with connect() as conn:
                cur = await conn.execute(
                    "UPDATE cart SET qty = ? WHERE owner = ? AND pid = ?;",
                    (qty, owner, pid),
                )
                updated = cur.rowcount
                await cur.close()
                if updated == 0:
                    cur = await conn.execute(
                        """
                        INSERT INTO cart(owner, pid, qty, name, unit_price, image, available)
                        SELECT ?, pid, ?, name, price, image, stock_count
                        FROM products
                        WHERE pid = ?;
                        """,
                        (owner, qty, pid),
                    )
                    inserted = cur.rowcount
                    await cur.close()
                    if inserted == 0:
                        raise NotFound("product", pid)
                await conn.commit()
            return

        async with connect() as conn:
            await conn.execute(
                """
                INSERT INTO cart(owner, pid, qty, name, unit_price, image, available)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner, pid) DO UPDATE SET
                    qty = excluded.qty,
                    available = excluded.available;
                """,
                (
                    owner,
                    pid,
                    qty,
                    product.name,
                    product.price,
                    product.image,
                    product.stock_count,
                ),
            )
            await conn.commit()

    async def remove(self, owner: int, pid: int) -> None:
        """Remove a single product from the user's cart."""
        async with connect() as conn:
            await conn.execute(
                "DELETE FROM cart WHERE owner = ? AND pid = ?;",
                (owner, pid),
            )
            await conn.commit()

    async def clear(self, owner: int) -> None:
        """Remove all items from the user's cart."""
        async with connect() as conn:
            await conn.execute("DELETE FROM cart WHERE owner = ?;", (owner,))
            await conn.commit()
