"""Inventory domain exceptions."""

from __future__ import annotations

from shared.domain.exceptions import (
    AuthorizationError,
    InputValidationError,
    InsufficientStockError,
    NotFoundError,
)


class InsufficientStock(InsufficientStockError):
    """A ledger holds fewer units than the order or adjustment requires."""


class StockEntryNotFound(NotFoundError):
    """The ledger entry does not exist or has been soft-deleted."""


class StockAccessDenied(AuthorizationError):
    """The actor does not own the ledger entry."""


class UnknownLedger(InputValidationError):
    """The ledger kind in the request is not one of ``retailer``/``system``."""
