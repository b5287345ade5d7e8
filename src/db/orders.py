# src/db/orders.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from db import models
from db.database import connect, to_decimal
from engine.errors import NotFound

_COLUMNS = "id, user_id, pid, qty, price, order_date, review, rating"


def _row_to_entry(row) -> models.OrderHistoryEntry:
    return models.OrderHistoryEntry(
        id=int(row[0]),
        user_id=int(row[1]),
        pid=int(row[2]),
        qty=int(row[3]),
        price=to_decimal(row[4]),
        order_date=datetime.fromisoformat(row[5]),
        review=row[6],
        rating=int(row[7]) if row[7] is not None else None,
    )


class SqliteOrderHistory:
    """Append-only purchase lines. Only review and rating change after insert."""

    async def append(
        self,
        user_id: int,
        pid: int,
        qty: int,
        price: Decimal,
        order_date: Optional[datetime] = None,
    ) -> int:
        """Record one purchased line and return its id."""
        order_date = order_date or datetime.now()
        async with connect() as conn:
            cur = await conn.execute(
                """
                INSERT INTO order_history(user_id, pid, qty, price, order_date)
                VALUES (?, ?, ?, ?, ?);
                """,
                (user_id, pid, qty, price, order_date.isoformat()),
            )
            order_id = cur.lastrowid
            await cur.close()
            await conn.commit()
        return int(order_id)

    async def get(self, order_id: int) -> Optional[models.OrderHistoryEntry]:
        async with connect() as conn:
            cur = await conn.execute(
                f"SELECT {_COLUMNS} FROM order_history WHERE id = ?;", (order_id,)
            )
            row = await cur.fetchone()
            await cur.close()
        return _row_to_entry(row) if row else None

    async def list_by_user(self, user_id: int) -> List[models.OrderHistoryEntry]:
        """A user's purchases, newest first."""
        async with connect() as conn:
            cur = await conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM order_history
                WHERE user_id = ?
                ORDER BY order_date DESC, id DESC;
                """,
                (user_id,),
            )
            rows = await cur.fetchall()
            await cur.close()
        return [_row_to_entry(row) for row in rows]

    async def list_all(self) -> List[models.OrderHistoryEntry]:
        async with connect() as conn:
            cur = await conn.execute(
                f"SELECT {_COLUMNS} FROM order_history ORDER BY order_date DESC, id DESC;"
            )
            rows = await cur.fetchall()
            await cur.close()
        return [_row_to_entry(row) for row in rows]

    async def set_review(self, order_id: int, text: str) -> None:
        await self._set_field(order_id, "review", text)

    async def set_rating(self, order_id: int, rating: int) -> None:
        # rating range is checked by the caller
        await self._set_field(order_id, "rating", rating)

    async def _set_field(self, order_id: int, column: str, value) -> None:
        async with connect() as conn:
            cur = await conn.execute(
                f"UPDATE order_history SET {column} = ? WHERE id = ?;",
                (value, order_id),
            )
            updated = cur.rowcount
            await cur.close()
            await conn.commit()
        if updated == 0:
            raise NotFound("order", order_id)
