from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from db.models import Identity, OrderHistoryEntry, Review
from engine.errors import NotAuthorized, NotFound, ReviewExists, ValidationFailure
from engine.interfaces import OrderHistoryLedger, ReviewStore
from utils.logger import get_logger

_logger = get_logger(__name__)


class ReviewUpsert:
    """
    Create-or-merge of the single review a user holds for a product.

    Fields left out of a call keep what is stored. Inputs are trusted; the
    caller has already checked the rating range and who is asking.
    """

    def __init__(
        self, store: ReviewStore, clock: Callable[[], datetime] = datetime.now
    ) -> None:
        self.store = store
        self.clock = clock

    async def upsert(
        self,
        user_id: int,
        pid: int,
        rating: Optional[int] = None,
        text: Optional[str] = None,
    ) -> int:
        existing = await self.store.find(user_id, pid)
        if existing is None:
            try:
                review_id = await self.store.insert(
                    user_id,
                    pid,
                    rating if rating is not None else 0,
                    text if text is not None else "",
                    self.clock(),
                )
                _logger.debug(f"Created review {review_id} for user {user_id}, product {pid}")
                return review_id
            except ReviewExists:
                # lost a race with another upsert for the same pair; merge into theirs
                existing = await self.store.find(user_id, pid)
                if existing is None:
                    raise

        await self.store.update(
            existing.review_id,
            rating if rating is not None else existing.rating,
            text if text is not None else existing.text,
            self.clock(),
        )
        _logger.debug(f"Updated review {existing.review_id} for user {user_id}, product {pid}")
        return existing.review_id


def parse_rating(raw) -> int:
    if isinstance(raw, bool):
        raise ValidationFailure("Rating must be between 1 and 5.")
    try:
        rating = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailure("Rating must be between 1 and 5.") from None
    if not 1 <= rating <= 5:
        raise ValidationFailure("Rating must be between 1 and 5.")
    return rating


class OrderFeedback:
    """Reviews and ratings left on purchased order lines."""

    def __init__(self, orders: OrderHistoryLedger, reviews: ReviewUpsert) -> None:
        self.orders = orders
        self.reviews = reviews

    async def review(self, identity: Identity, order_id: int, text) -> int:
        """Attach review text to an order line and to the buyer's product review."""
        text = str(text).strip() if text is not None else ""
        if not text:
            raise ValidationFailure("Review cannot be empty.")
        entry = await self._owned_entry(identity, order_id)
        await self.orders.set_review(order_id, text)
        return await self.reviews.upsert(entry.user_id, entry.pid, text=text)

    async def rate(self, identity: Identity, order_id: int, rating) -> int:
        rating = parse_rating(rating)
        entry = await self._owned_entry(identity, order_id)
        await self.orders.set_rating(order_id, rating)
        return await self.reviews.upsert(entry.user_id, entry.pid, rating=rating)

    async def history(self, identity: Identity) -> List[OrderHistoryEntry]:
        if identity.is_admin:
            return await self.orders.list_all()
        return await self.orders.list_by_user(identity.user_id)

    async def reviews_for(self, identity: Identity) -> List[Review]:
        store = self.reviews.store
        if identity.is_admin:
            return await store.list_all()
        return await store.list_by_user(identity.user_id)

    async def _owned_entry(self, identity: Identity, order_id: int) -> OrderHistoryEntry:
        entry = await self.orders.get(order_id)
        if entry is None:
            raise NotFound("order", order_id)
        if entry.user_id != identity.user_id and not identity.is_admin:
            _logger.warning(
                f"User {identity.user_id} tried to change feedback on order {order_id}"
            )
            raise NotAuthorized(f"Order {order_id} does not belong to you.")
        return entry
