from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from db.models import Identity, Invoice


@dataclass
class SessionState:
    """
    Per-session values a request handler passes explicitly to the engine.

    Fields:
      - session_id: key of the ephemeral session cart
      - identity: resolved user, or None before login / after logout
      - invoice: last checkout's invoice, shown once then dropped
    """

    session_id: str
    identity: Optional[Identity] = None
    invoice: Optional[Invoice] = None

    @property
    def cart_key(self) -> str:
        return self.session_id

    def store_invoice(self, invoice: Invoice) -> None:
        """Keep the invoice for display; a newer checkout replaces an unread one."""
        self.invoice = invoice

    def take_invoice(self) -> Optional[Invoice]:
        invoice, self.invoice = self.invoice, None
        return invoice

    def end(self) -> None:
        """Forget who is logged in and any unread invoice."""
        self.identity = None
        self.invoice = None
