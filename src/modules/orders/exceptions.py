"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.  Each one
subclasses the shared taxonomy so the API layer can translate it into an
HTTP response without knowing the concrete type.
"""

from __future__ import annotations

from shared.domain.exceptions import (
    AuthorizationError,
    InputValidationError,
    NotFoundError,
    PersistenceConflictError,
    StateConflictError,
)


class OrderNotFound(NotFoundError):
    """The requested order does not exist."""


class ProductNotFound(NotFoundError):
    """The product referenced by the order does not exist."""


class InactiveProduct(InputValidationError):
    """The product referenced by the order is inactive."""


class BelowMinOrderQuantity(InputValidationError):
    """The order quantity is below the product's minimum order quantity."""


class InvalidAssignment(InputValidationError):
    """An assignment names no transporter, or names one for the free pool."""


class InvalidReturnAction(InputValidationError):
    """``handle-return`` was called with an action other than accept/reject."""


class OrderAccessDenied(AuthorizationError):
    """The actor has no standing on this order."""


class OrderNotDisputed(StateConflictError):
    """Dispute resolution requires the order to be in ``disputed``."""


class OrderNotReturning(StateConflictError):
    """Return handling requires the order to be in ``return_to_wholesaler``."""


class OrderNotDeletable(StateConflictError):
    """The order's status does not allow deletion."""


class StaleOrderVersion(PersistenceConflictError):
    """The client's ``expected_version`` no longer matches the stored order."""
