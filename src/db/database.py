# manages connection to db, provides helper methods internal to db package
import asyncio
import os
import sqlite3
from contextlib import asynccontextmanager
from decimal import Decimal
from sqlite3 import Row

import aiosqlite

from engine.errors import PersistenceFailure
from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = os.getenv("STOREFRONT_DB_PATH", "data/storefront.sqlite")
SCHEMA_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schema.sql")

# prices live in TEXT columns so no precision is lost on the way through
sqlite3.register_adapter(Decimal, str)

_initialized = False
_init_lock = asyncio.Lock()


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Initializing database with script {SCHEMA_SCRIPT}...")
    with open(SCHEMA_SCRIPT, "r") as f:
        await conn.executescript(f.read())
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


async def _open() -> aiosqlite.Connection:
    global _initialized
    parent = os.path.dirname(DB_PATH)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = await aiosqlite.connect(DB_PATH)
    try:
        conn.row_factory = Row
        await conn.execute("PRAGMA foreign_keys = ON;")

        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    exists = await _table_exists(conn, "products")
                    if not exists:
                        await _init_db(conn)
                    _initialized = True
    except Exception:
        await conn.close()
        raise
    return conn


@asynccontextmanager
async def connect() -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    Ensures the schema exists on first use. Any sqlite error raised while the
    connection is open surfaces as PersistenceFailure; engine errors raised in
    the block pass through untouched.
    """
    try:
        conn = await _open()
    except sqlite3.Error as e:
        _logger.error(f"Could not open database {DB_PATH}: {e}")
        raise PersistenceFailure(f"could not open database: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        raise PersistenceFailure(str(e)) from e
    finally:
        await conn.close()


def to_decimal(val) -> Decimal:
    return Decimal(str(val)) if val is not None else Decimal("0")
