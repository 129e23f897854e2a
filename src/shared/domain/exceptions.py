"""Domain error taxonomy shared by every bounded context.

Views translate these into HTTP responses; services raise them before
anything is persisted.  ``SideEffectFailure`` is the one exception that is
never propagated to the caller: it is collected and reported as a warning
next to the already-committed primary mutation.
"""

from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Root of all business-rule violations."""


class InputValidationError(DomainError):
    """Missing or malformed input.  Caller-fixable, no side effects attempted."""


class AuthorizationError(DomainError):
    """The actor has no standing on the target aggregate."""


class NotFoundError(DomainError):
    """The aggregate or a referenced entity does not exist."""


class InvalidTransitionError(DomainError):
    """The requested status is not reachable from the current one for the role."""

    def __init__(
        self,
        from_status: str,
        to_status: str,
        role: str,
        message: Optional[str] = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.role = role
        super().__init__(
            message
            or f"Invalid status transition from {from_status} to {to_status} "
            f"for {role}."
        )


class StateConflictError(DomainError):
    """The aggregate is in a state where the operation is not permitted."""


class InsufficientStockError(DomainError):
    """A stock decrement would leave a ledger with a negative quantity."""


class PersistenceConflictError(DomainError):
    """A concurrent write won the race.  The caller should retry."""


class SideEffectFailure(DomainError):
    """A secondary effect failed after the primary mutation succeeded."""

    def __init__(self, effect: str, message: str) -> None:
        self.effect = effect
        super().__init__(message)
