import asyncio
from decimal import Decimal

from dbcase import DbTestCase

from engine.errors import InsufficientStock, NotFound, PersistenceFailure, ValidationFailure


class StockLedgerTestCase(DbTestCase):
    async def test_add_and_get_product(self):
        pid = await self.make_product("Desk Lamp", "24.50", 7, "lamp.png")
        product = await self.ledger.get_product(pid)
        self.assertEqual(product.name, "Desk Lamp")
        self.assertEqual(product.price, Decimal("24.50"))
        self.assertEqual(product.stock_count, 7)
        self.assertEqual(product.image, "lamp.png")
        self.assertIsNone(await self.ledger.get_product(999999))

        products = await self.ledger.list_products()
        self.assertEqual([p.pid for p in products], [pid])

    async def test_decrease_within_stock(self):
        pid = await self.make_product(stock=5)
        await self.ledger.decrease(pid, 3)
        self.assertEqual(await self.stock_of(pid), 2)
        await self.ledger.decrease(pid, 2)
        self.assertEqual(await self.stock_of(pid), 0)

    async def test_decrease_beyond_stock_changes_nothing(self):
        pid = await self.make_product("Mug", stock=5)
        with self.assertRaises(InsufficientStock) as ctx:
            await self.ledger.decrease(pid, 6)
        self.assertEqual(ctx.exception.product_name, "Mug")
        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(await self.stock_of(pid), 5)

    async def test_decrease_missing_product(self):
        with self.assertRaises(NotFound):
            await self.ledger.decrease(424242, 1)

    async def test_decrease_rejects_non_positive_amounts(self):
        pid = await self.make_product(stock=5)
        for bad in (0, -1, 1.5, True):
            with self.assertRaises(ValidationFailure):
                await self.ledger.decrease(pid, bad)
        self.assertEqual(await self.stock_of(pid), 5)

    async def test_concurrent_decreases_never_oversell(self):
        pid = await self.make_product(stock=5)
        results = await asyncio.gather(
            *(self.ledger.decrease(pid, 1) for _ in range(10)),
            return_exceptions=True,
        )
        won = [r for r in results if r is None]
        lost = [r for r in results if isinstance(r, InsufficientStock)]
        self.assertEqual(len(won), 5)
        self.assertEqual(len(lost), 5)
        self.assertEqual(await self.stock_of(pid), 0)

    async def test_exactly_one_winner_for_last_units(self):
        pid = await self.make_product(stock=3)
        results = await asyncio.gather(
            self.ledger.decrease(pid, 3),
            self.ledger.decrease(pid, 3),
            return_exceptions=True,
        )
        self.assertEqual(sum(1 for r in results if r is None), 1)
        self.assertEqual(sum(1 for r in results if isinstance(r, InsufficientStock)), 1)
        self.assertEqual(await self.stock_of(pid), 0)

    async def test_update_price_stock(self):
        pid = await self.make_product(price="10.00", stock=5)
        self.assertFalse(await self.ledger.update_price_stock(pid, None, None))
        self.assertFalse(await self.ledger.update_price_stock(999999, None, 3))

        self.assertTrue(await self.ledger.update_price_stock(pid, Decimal("12.00"), None))
        self.assertTrue(await self.ledger.update_price_stock(pid, None, 9))
        product = await self.ledger.get_product(pid)
        self.assertEqual(product.price, Decimal("12.00"))
        self.assertEqual(product.stock_count, 9)

        with self.assertRaises(ValidationFailure):
            await self.ledger.update_price_stock(pid, None, -1)
        with self.assertRaises(ValidationFailure):
            await self.make_product(stock=-2)

    async def test_storage_errors_surface_as_persistence_failure(self):
        from db import database as db_database

        with self.assertRaises(PersistenceFailure):
            async with db_database.connect() as conn:
                await conn.execute("SELECT * FROM no_such_table;")

    async def test_connection_closed_when_schema_setup_fails(self):
        import sqlite3
        from unittest.mock import AsyncMock, patch

        import aiosqlite

        from db import database as db_database

        db_database._initialized = False
        real_close = aiosqlite.Connection.close
        broken = AsyncMock(side_effect=sqlite3.OperationalError("disk I/O error"))
        with patch.object(db_database, "_table_exists", broken), patch.object(
            aiosqlite.Connection, "close", autospec=True, side_effect=real_close
        ) as close:
            with self.assertRaises(PersistenceFailure):
                async with db_database.connect():
                    pass
        self.assertEqual(close.await_count, 1)
        self.assertFalse(db_database._initialized)
