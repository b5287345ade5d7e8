from datetime import datetime, timedelta
from decimal import Decimal

from dbcase import DbTestCase

from db.models import Identity, Review
from db.orders import SqliteOrderHistory
from db.reviews import SqliteReviewStore
from engine.errors import NotAuthorized, NotFound, ReviewExists, ValidationFailure
from engine.reviews import OrderFeedback, ReviewUpsert, parse_rating


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class RacingReviewStore:
    """find() misses once, then insert() collides with the row a rival just wrote."""

    def __init__(self, inner):
        self.inner = inner
        self.misses = 1

    async def find(self, user_id, pid):
        if self.misses:
            self.misses -= 1
            return None
        return await self.inner.find(user_id, pid)

    async def insert(self, user_id, pid, rating, text, when):
        return await self.inner.insert(user_id, pid, rating, text, when)

    async def update(self, review_id, rating, text, when):
        await self.inner.update(review_id, rating, text, when)


class OrderHistoryTestCase(DbTestCase):
    def setUp(self):
        super().setUp()
        self.orders = SqliteOrderHistory()

    async def test_append_get_and_list(self):
        pid = await self.make_product()
        first = await self.orders.append(1, pid, 2, Decimal("20.00"), datetime(2025, 1, 1))
        second = await self.orders.append(1, pid, 1, Decimal("10.00"), datetime(2025, 2, 1))
        other = await self.orders.append(2, pid, 1, Decimal("10.00"), datetime(2025, 3, 1))

        entry = await self.orders.get(first)
        self.assertEqual(entry.price, Decimal("20.00"))
        self.assertIsNone(entry.review)
        self.assertIsNone(entry.rating)
        self.assertIsNone(await self.orders.get(999999))

        self.assertEqual([e.id for e in await self.orders.list_by_user(1)], [second, first])
        self.assertEqual([e.id for e in await self.orders.list_all()], [other, second, first])

    async def test_set_review_and_rating_touch_only_those_fields(self):
        pid = await self.make_product()
        order_id = await self.orders.append(1, pid, 2, Decimal("20.00"), datetime(2025, 1, 1))
        await self.orders.set_review(order_id, "solid")
        await self.orders.set_rating(order_id, 4)
        entry = await self.orders.get(order_id)
        self.assertEqual((entry.review, entry.rating), ("solid", 4))
        self.assertEqual((entry.qty, entry.price), (2, Decimal("20.00")))

        with self.assertRaises(NotFound):
            await self.orders.set_review(999999, "x")
        with self.assertRaises(NotFound):
            await self.orders.set_rating(999999, 3)


class ReviewUpsertTestCase(DbTestCase):
    def setUp(self):
        super().setUp()
        self.store = SqliteReviewStore()
        self.clock = Clock(datetime(2025, 6, 1))
        self.upsert = ReviewUpsert(self.store, clock=self.clock)

    async def test_rating_then_text_merges_into_one_row(self):
        pid = await self.make_product()
        first = await self.upsert.upsert(1, pid, rating=4)
        second = await self.upsert.upsert(1, pid, text="great")
        self.assertEqual(first, second)

        rows = await self.store.list_all()
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0].rating, rows[0].text), (4, "great"))

    async def test_text_then_rating_merges_into_one_row(self):
        pid = await self.make_product()
        await self.upsert.upsert(1, pid, text="great")
        await self.upsert.upsert(1, pid, rating=5)
        await self.upsert.upsert(1, pid, rating=5)
        rows = await self.store.list_by_user(1)
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0].rating, rows[0].text), (5, "great"))

    async def test_new_review_defaults_and_timestamp_moves(self):
        pid = await self.make_product()
        review_id = await self.upsert.upsert(1, pid, text="ok")
        created = await self.store.get(review_id)
        self.assertEqual(created.rating, 0)

        await self.upsert.upsert(1, pid, rating=2)
        updated = await self.store.get(review_id)
        self.assertGreater(updated.review_date, created.review_date)
        self.assertEqual(updated.text, "ok")

    async def test_separate_pairs_get_separate_rows(self):
        a = await self.make_product("A")
        b = await self.make_product("B")
        await self.upsert.upsert(1, a, rating=3)
        await self.upsert.upsert(1, b, rating=3)
        await self.upsert.upsert(2, a, rating=3)
        self.assertEqual(len(await self.store.list_all()), 3)
        self.assertIsNone(await self.store.get(999999))

    async def test_insert_of_existing_pair_raises_review_exists(self):
        pid = await self.make_product()
        await self.store.insert(1, pid, 1, "", datetime(2025, 1, 1))
        with self.assertRaises(ReviewExists):
            await self.store.insert(1, pid, 2, "", datetime(2025, 1, 2))

    async def test_lost_insert_race_is_merged(self):
        pid = await self.make_product()
        rival = await self.store.insert(1, pid, 3, "", datetime(2025, 1, 1))

        upsert = ReviewUpsert(RacingReviewStore(self.store), clock=self.clock)
        review_id = await upsert.upsert(1, pid, text="late")

        self.assertEqual(review_id, rival)
        found = await self.store.find(1, pid)
        self.assertEqual((found.rating, found.text), (3, "late"))


class OrderFeedbackTestCase(DbTestCase):
    def setUp(self):
        super().setUp()
        self.orders = SqliteOrderHistory()
        self.store = SqliteReviewStore()
        self.feedback = OrderFeedback(self.orders, ReviewUpsert(self.store))
        self.owner = Identity(user_id=1)
        self.stranger = Identity(user_id=2)
        self.admin = Identity(user_id=99, role="admin")

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.pid = await self.make_product("Lamp")
        self.order_id = await self.orders.append(
            1, self.pid, 1, Decimal("10.00"), datetime(2025, 1, 1)
        )

    def test_parse_rating(self):
        self.assertEqual(parse_rating("3"), 3)
        self.assertEqual(parse_rating(5), 5)
        for bad in (0, 6, "abc", None, "4.5", True, False):
            with self.assertRaises(ValidationFailure):
                parse_rating(bad)

    async def test_rate_and_review_update_order_and_product_review(self):
        await self.feedback.rate(self.owner, self.order_id, "4")
        await self.feedback.review(self.owner, self.order_id, "  bright enough  ")

        entry = await self.orders.get(self.order_id)
        self.assertEqual((entry.rating, entry.review), (4, "bright enough"))
        reviews = await self.store.list_by_user(1)
        self.assertEqual(len(reviews), 1)
        self.assertIsInstance(reviews[0], Review)
        self.assertEqual((reviews[0].rating, reviews[0].text), (4, "bright enough"))

    async def test_invalid_input_changes_nothing(self):
        with self.assertRaises(ValidationFailure):
            await self.feedback.rate(self.owner, self.order_id, 7)
        with self.assertRaises(ValidationFailure):
            await self.feedback.review(self.owner, self.order_id, "   ")
        entry = await self.orders.get(self.order_id)
        self.assertIsNone(entry.rating)
        self.assertEqual(await self.store.list_all(), [])

    async def test_missing_order(self):
        with self.assertRaises(NotFound):
            await self.feedback.rate(self.owner, 999999, 3)

    async def test_only_owner_or_admin(self):
        with self.assertRaises(NotAuthorized):
            await self.feedback.rate(self.stranger, self.order_id, 3)

        await self.feedback.rate(self.admin, self.order_id, 2)
        # the review belongs to the buyer, not to the admin who entered it
        self.assertEqual(len(await self.store.list_by_user(1)), 1)
        self.assertEqual(await self.store.list_by_user(99), [])

    async def test_history_and_reviews_visibility(self):
        await self.orders.append(2, self.pid, 1, Decimal("10.00"), datetime(2025, 2, 1))
        await self.feedback.rate(self.owner, self.order_id, 5)

        self.assertEqual(len(await self.feedback.history(self.owner)), 1)
        self.assertEqual(len(await self.feedback.history(self.admin)), 2)
        self.assertEqual(len(await self.feedback.reviews_for(self.owner)), 1)
        self.assertEqual(await self.feedback.reviews_for(self.stranger), [])
        self.assertEqual(len(await self.feedback.reviews_for(self.admin)), 1)

    async def test_non_string_review_text_is_stored_as_text(self):
        await self.feedback.review(self.owner, self.order_id, 1234)
        entry = await self.orders.get(self.order_id)
        self.assertEqual(entry.review, "1234")
