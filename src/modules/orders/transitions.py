"""Pure lookup over the order transition table."""

from __future__ import annotations

from modules.orders.constants import TRANSITION_TABLE

_NOTHING: frozenset[str] = frozenset()


def allowed_targets(role: str, status: str) -> frozenset[str]:
    """Statuses *role* may move an order in *status* into."""
    return TRANSITION_TABLE.get((role, status), _NOTHING)


def is_allowed(role: str, status: str, target: str) -> bool:
    return target in allowed_targets(role, status)
