"""
Checkout pipeline.

A checkout walks one cart through fixed stages:

    loaded -> validated -> stock_decremented -> order_recorded -> invoiced -> cleared

Every stage finishes for all lines before the next one starts, and inside a
stage the lines are handled one at a time in cart order, so a failure can
always be pinned on one product.

Validation only reads. Two checkouts can both pass it for the last units of
a product; the conditional decrement in the stock ledger is what stops the
second one. Nothing is rolled back: once a decrement has committed, any
later failure is raised as PartialCheckoutFailure for an operator to settle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, List, NoReturn, Optional, Sequence, Tuple

from db.models import CartLine, Invoice, InvoiceLine
from engine.errors import (
    CheckoutError,
    EmptyCart,
    InsufficientStock,
    NotFound,
    PartialCheckoutFailure,
    PersistenceFailure,
)
from engine.interfaces import CartStore, OrderHistoryLedger, Owner, StockLedger
from utils.logger import get_logger

_logger = get_logger(__name__)


class Stage(str, Enum):
    LOADED = "loaded"
    VALIDATED = "validated"
    STOCK_DECREMENTED = "stock_decremented"
    ORDER_RECORDED = "order_recorded"
    INVOICED = "invoiced"
    CLEARED = "cleared"
    ABORTED = "aborted"


@dataclass
class SeriesOutcome:
    """What happened when a worker ran over the lines one by one."""

    succeeded: List[CartLine] = field(default_factory=list)
    results: List[Any] = field(default_factory=list)
    failed_line: Optional[CartLine] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_series(
    lines: Sequence[CartLine], worker: Callable[[CartLine], Awaitable[Any]]
) -> SeriesOutcome:
    """Await worker(line) for each line in order; stop at the first exception."""
    outcome = SeriesOutcome()
    for line in lines:
        try:
            result = await worker(line)
        except Exception as e:
            outcome.failed_line = line
            outcome.error = e
            break
        outcome.succeeded.append(line)
        outcome.results.append(result)
    return outcome


@dataclass(frozen=True)
class CheckoutReceipt:
    invoice: Invoice
    order_ids: Tuple[int, ...]
    stage: Stage
    cart_cleared: bool


def _raise_for(err: Exception, stage: Stage, line: Optional[CartLine]) -> NoReturn:
    """Re-raise err, attaching stage context to store failures. Engine errors pass as they are."""
    if isinstance(err, CheckoutError) and not isinstance(err, PersistenceFailure):
        raise err
    pid = line.pid if line is not None else None
    message = str(err) if isinstance(err, PersistenceFailure) else f"{type(err).__name__}: {err}"
    raise PersistenceFailure(message, stage=stage.value, pid=pid) from err


class CheckoutPipeline:
    def __init__(
        self,
        carts: CartStore,
        ledger: StockLedger,
        orders: OrderHistoryLedger,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.carts = carts
        self.ledger = ledger
        self.orders = orders
        self.clock = clock

    async def checkout(self, user_id: int, cart_key: Optional[Owner] = None) -> CheckoutReceipt:
        """
        Turn the cart into stock deductions, order history and an invoice.

        cart_key is the handle of the cart to consume; it defaults to the user
        id (persistent cart) and is the session id for a session cart.

        Raises EmptyCart, InsufficientStock or NotFound when nothing has been
        changed, PersistenceFailure when a store fails, and
        PartialCheckoutFailure once stock has already been taken.
        """
        owner = user_id if cart_key is None else cart_key

        try:
            lines = await self.carts.get(owner)
        except Exception as e:
            _raise_for(e, Stage.LOADED, None)
        if not lines:
            self._abort(user_id, Stage.LOADED, "cart is empty")
            raise EmptyCart()
        self._enter(user_id, Stage.LOADED)

        await self._validate(user_id, lines)
        self._enter(user_id, Stage.VALIDATED)

        await self._decrement(user_id, lines)
        self._enter(user_id, Stage.STOCK_DECREMENTED)

        now = self.clock()
        order_ids = await self._record(user_id, lines, now)
        self._enter(user_id, Stage.ORDER_RECORDED)

        invoice = self.build_invoice(lines, now)
        self._enter(user_id, Stage.INVOICED)

        cleared = await self._clear(user_id, owner)
        stage = Stage.CLEARED if cleared else Stage.INVOICED
        if cleared:
            self._enter(user_id, Stage.CLEARED)

        _logger.info(
            f"Checkout for user {user_id} completed: {len(lines)} line(s), total {invoice.total}"
        )
        return CheckoutReceipt(
            invoice=invoice,
            order_ids=tuple(order_ids),
            stage=stage,
            cart_cleared=cleared,
        )

    @staticmethod
    def build_invoice(lines: Sequence[CartLine], when: datetime) -> Invoice:
        items = tuple(
            InvoiceLine(pid=line.pid, name=line.name, qty=line.qty, amount=line.amount)
            for line in lines
        )
        total = sum((item.amount for item in items), Decimal("0"))
        return Invoice(lines=items, total=total, created_at=when)

    def _enter(self, user_id: int, stage: Stage) -> None:
        _logger.debug(f"Checkout for user {user_id} -> {stage.value}")

    def _abort(self, user_id: int, stage: Stage, reason: str) -> None:
        _logger.info(
            f"Checkout for user {user_id} -> {Stage.ABORTED.value} during {stage.value}: {reason}"
        )

    async def _validate(self, user_id: int, lines: Sequence[CartLine]) -> None:
        async def check(line: CartLine) -> None:
            product = await self.ledger.get_product(line.pid)
            if product is None:
                raise NotFound("product", line.pid)
            if product.stock_count < line.qty:
                raise InsufficientStock(product.name, product.stock_count)

        outcome = await run_series(lines, check)
        if not outcome.ok:
            self._abort(
                user_id, Stage.VALIDATED, f"product {outcome.failed_line.pid}: {outcome.error}"
            )
            _raise_for(outcome.error, Stage.VALIDATED, outcome.failed_line)

    async def _decrement(self, user_id: int, lines: Sequence[CartLine]) -> None:
        outcome = await run_series(
            lines, lambda line: self.ledger.decrease(line.pid, line.qty)
        )
        if outcome.ok:
            return

        if outcome.succeeded:
            _logger.error(
                f"Checkout for user {user_id}: stock already taken for "
                f"{[line.pid for line in outcome.succeeded]} but product "
                f"{outcome.failed_line.pid} failed ({outcome.error}). "
                f"Not rolled back, needs operator follow-up."
            )
            raise PartialCheckoutFailure(
                Stage.STOCK_DECREMENTED.value, outcome.succeeded, outcome.failed_line
            ) from outcome.error

        self._abort(
            user_id,
            Stage.STOCK_DECREMENTED,
            f"product {outcome.failed_line.pid}: {outcome.error}",
        )
        _raise_for(outcome.error, Stage.STOCK_DECREMENTED, outcome.failed_line)

    async def _record(
        self, user_id: int, lines: Sequence[CartLine], when: datetime
    ) -> List[int]:
        outcome = await run_series(
            lines,
            lambda line: self.orders.append(user_id, line.pid, line.qty, line.amount, when),
        )
        if outcome.ok:
            return outcome.results

        # every line's stock is gone at this point, whatever failed here
        _logger.error(
            f"Checkout for user {user_id}: stock taken for all {len(lines)} line(s) "
            f"but order history failed on product {outcome.failed_line.pid} "
            f"after {len(outcome.succeeded)} record(s) ({outcome.error}). "
            f"Needs operator follow-up."
        )
        raise PartialCheckoutFailure(
            Stage.ORDER_RECORDED.value, outcome.succeeded, outcome.failed_line
        ) from outcome.error

    async def _clear(self, user_id: int, owner: Owner) -> bool:
        try:
            await self.carts.clear(owner)
        except Exception:
            _logger.exception(
                f"Checkout for user {user_id} succeeded but the cart could not be cleared"
            )
            return False
        return True
