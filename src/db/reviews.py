# src/db/reviews.py
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional

from db import models
from db.database import connect
from engine.errors import ReviewExists

_COLUMNS = "review_id, user_id, pid, rating, review_text, review_date"


def _row_to_review(row) -> models.Review:
    return models.Review(
        review_id=int(row[0]),
        user_id=int(row[1]),
        pid=int(row[2]),
        rating=int(row[3]),
        text=row[4] or "",
        review_date=datetime.fromisoformat(row[5]),
    )


class SqliteReviewStore:
    """Reviews table; UNIQUE (user_id, pid) keeps one row per pair."""

    async def find(self, user_id: int, pid: int) -> Optional[models.Review]:
        async with connect() as conn:
            cur = await conn.execute(
                f"SELECT {_COLUMNS} FROM reviews WHERE user_id = ? AND pid = ? LIMIT 1;",
                (user_id, pid),
            )
            row = await cur.fetchone()
            await cur.close()
        return _row_to_review(row) if row else None

    async def get(self, review_id: int) -> Optional[models.Review]:
        async with connect() as conn:
            cur = await conn.execute(
                f"SELECT {_COLUMNS} FROM reviews WHERE review_id = ?;", (review_id,)
            )
            row = await cur.fetchone()
            await cur.close()
        return _row_to_review(row) if row else None

    async def insert(
        self, user_id: int, pid: int, rating: int, text: str, when: datetime
    ) -> int:
        async with connect() as conn:
            try:
                cur = await conn.execute(
                    """
                    INSERT INTO reviews(user_id, pid, rating, review_text, review_date)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    (user_id, pid, rating, text, when.isoformat()),
                )
            except sqlite3.IntegrityError as e:
                # a missing product is also an integrity error; only the
                # unique pair means someone else got there first
                if "UNIQUE" not in str(e):
                    raise
                raise ReviewExists(user_id, pid) from e
            review_id = cur.lastrowid
            await cur.close()
            await conn.commit()
        return int(review_id)

    async def update(
        self, review_id: int, rating: int, text: str, when: datetime
    ) -> None:
        async with connect() as conn:
            await conn.execute(
                """
                UPDATE reviews
                SET rating = ?, review_text = ?, review_date = ?
                WHERE review_id = ?;
                """,
                (rating, text, when.isoformat(), review_id),
            )
            await conn.commit()

    async def list_by_user(self, user_id: int) -> List[models.Review]:
        async with connect() as conn:
            cur = await conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM reviews
                WHERE user_id = ?
                ORDER BY review_date DESC, review_id DESC;
                """,
                (user_id,),
            )
            rows = await cur.fetchall()
            await cur.close()
        return [_row_to_review(row) for row in rows]

    async def list_all(self) -> List[models.Review]:
        async with connect() as conn:
            cur = await conn.execute(
                f"SELECT {_COLUMNS} FROM reviews ORDER BY review_date DESC, review_id DESC;"
            )
            rows = await cur.fetchall()
            await cur.close()
        return [_row_to_review(row) for row in rows]
