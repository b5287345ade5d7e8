# error taxonomy shared by the stores and the checkout engine
from __future__ import annotations

from typing import Optional, Sequence


class CheckoutError(Exception):
    """Base class for every error raised by the cart/checkout engine."""


class NotFound(CheckoutError):
    def __init__(self, kind: str, key) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class InsufficientStock(CheckoutError):
    def __init__(self, product_name: str, available: int) -> None:
        super().__init__(f"Only {available} in stock for {product_name}")
        self.product_name = product_name
        self.available = available


class EmptyCart(CheckoutError):
    def __init__(self) -> None:
        super().__init__("Cart is empty")


class ValidationFailure(CheckoutError, ValueError):
    """Bad quantity or rating input."""


class NotAuthorized(CheckoutError):
    """The identity may not act on the requested order line."""


class ReviewExists(CheckoutError):
    """A review for this (user, product) pair was inserted concurrently."""

    def __init__(self, user_id: int, pid: int) -> None:
        super().__init__(f"review for user {user_id} and product {pid} already exists")
        self.user_id = user_id
        self.pid = pid


class PersistenceFailure(CheckoutError):
    """
    An underlying store failed.

    stage and pid are filled in by the checkout pipeline when the failure
    happens inside one of its stages.
    """

    def __init__(
        self, message: str, stage: Optional[str] = None, pid: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.pid = pid


class PartialCheckoutFailure(CheckoutError):
    """
    Raised when checkout failed after at least one durable mutation.

    Stock that was already decremented (and any order history already
    written) is NOT rolled back. Callers must flag this for an operator.
    """

    def __init__(self, stage: str, succeeded_lines: Sequence, failed_line) -> None:
        pid = getattr(failed_line, "pid", None)
        super().__init__(
            f"checkout failed at stage {stage} on product {pid} "
            f"after {len(succeeded_lines)} line(s) committed"
        )
        self.stage = stage
        self.succeeded_lines = list(succeeded_lines)
        self.failed_line = failed_line


SUPPORT_MESSAGE = "Checkout could not complete. Please contact support."


def user_message(exc: CheckoutError) -> str:
    """Text shown to the customer for a failed cart or checkout action."""
    if isinstance(exc, (PartialCheckoutFailure, PersistenceFailure)):
        return SUPPORT_MESSAGE
    if isinstance(exc, NotFound):
        return f"{exc.kind.capitalize()} not found"
    return str(exc)


def is_retryable(exc: CheckoutError) -> bool:
    """True when nothing durable changed, so the customer may simply try again."""
    if isinstance(exc, PartialCheckoutFailure):
        return False
    if isinstance(exc, PersistenceFailure):
        # failures before any stock was touched are safe to retry
        return exc.stage in (None, "loaded", "validated")
    return True
