"""Order domain constants.

Defines the status vocabulary and the role-aware transition table of the
order lifecycle state machine.
"""

from django.db import models

from modules.core.authentication import ActorRole


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    PROCESSING = "processing", "Processing"
    ASSIGNED_TO_TRANSPORTER = "assigned_to_transporter", "Assigned to transporter"
    ACCEPTED_BY_TRANSPORTER = "accepted_by_transporter", "Accepted by transporter"
    IN_TRANSIT = "in_transit", "In transit"
    DELIVERED = "delivered", "Delivered"
    CERTIFIED = "certified", "Certified"
    DISPUTED = "disputed", "Disputed"
    RETURN_TO_WHOLESALER = "return_to_wholesaler", "Return to wholesaler"
    RETURN_ACCEPTED = "return_accepted", "Return accepted"
    RETURN_REJECTED = "return_rejected", "Return rejected"
    CANCELLED_BY_RETAILER = "cancelled_by_retailer", "Cancelled by retailer"
    CANCELLED_BY_WHOLESALER = "cancelled_by_wholesaler", "Cancelled by wholesaler"
    REJECTED_BY_TRANSPORTER = "rejected_by_transporter", "Rejected by transporter"
    CANCELLED_BY_TRANSPORTER = "cancelled_by_transporter", "Cancelled by transporter"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    CASH_ON_DELIVERY = "cash_on_delivery", "Cash on delivery"
    MOBILE_MONEY = "mobile_money", "Mobile money"
    BANK_TRANSFER = "bank_transfer", "Bank transfer"
    CREDIT_CARD = "credit_card", "Credit card"


class AssignmentType(models.TextChoices):
    SPECIFIC = "specific", "Specific transporter"
    FREE = "free", "Free pool"


class AssignmentOutcome(models.TextChoices):
    ASSIGNED = "assigned", "Assigned"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    CANCELLED = "cancelled", "Cancelled"


class AssignmentState(models.TextChoices):
    """Derived state of the open offer on an ``assigned_to_transporter`` order."""

    NOT_ASSIGNED = "not_assigned", "Not assigned"
    EXPIRED = "expired", "Assignment expired, needs re-assignment"
    AWAITING_ANY_TRANSPORTER = "awaiting_any_transporter", "Waiting for any transporter to accept"
    AWAITING_TRANSPORTER = "awaiting_transporter", "Waiting for the assigned transporter"


S = OrderStatus

# (role, current status) -> statuses the role may move the order into.
# Pairs not listed allow nothing.  Admins have read access only.
TRANSITION_TABLE: dict[tuple[str, str], frozenset[str]] = {
    # Retailer
    (ActorRole.RETAILER, S.PENDING): frozenset({S.CANCELLED_BY_RETAILER}),
    (ActorRole.RETAILER, S.ACCEPTED): frozenset({S.CANCELLED_BY_RETAILER}),
    (ActorRole.RETAILER, S.PROCESSING): frozenset({S.CANCELLED_BY_RETAILER}),
    (ActorRole.RETAILER, S.DELIVERED): frozenset({S.CERTIFIED, S.DISPUTED}),
    # Wholesaler
    (ActorRole.WHOLESALER, S.PENDING): frozenset({S.ACCEPTED, S.REJECTED}),
    (ActorRole.WHOLESALER, S.ACCEPTED): frozenset(
        {S.PROCESSING, S.CANCELLED_BY_WHOLESALER}
    ),
    (ActorRole.WHOLESALER, S.PROCESSING): frozenset(
        {S.ASSIGNED_TO_TRANSPORTER, S.CANCELLED_BY_WHOLESALER}
    ),
    (ActorRole.WHOLESALER, S.ASSIGNED_TO_TRANSPORTER): frozenset(
        {S.ASSIGNED_TO_TRANSPORTER}
    ),
    (ActorRole.WHOLESALER, S.REJECTED_BY_TRANSPORTER): frozenset(
        {S.ASSIGNED_TO_TRANSPORTER}
    ),
    (ActorRole.WHOLESALER, S.CANCELLED_BY_TRANSPORTER): frozenset(
        {S.ASSIGNED_TO_TRANSPORTER}
    ),
    (ActorRole.WHOLESALER, S.DISPUTED): frozenset({S.ASSIGNED_TO_TRANSPORTER}),
    (ActorRole.WHOLESALER, S.RETURN_REJECTED): frozenset({S.ASSIGNED_TO_TRANSPORTER}),
    (ActorRole.WHOLESALER, S.RETURN_TO_WHOLESALER): frozenset(
        {S.RETURN_ACCEPTED, S.RETURN_REJECTED}
    ),
    # Transporter
    (ActorRole.TRANSPORTER, S.ASSIGNED_TO_TRANSPORTER): frozenset(
        {S.ACCEPTED_BY_TRANSPORTER, S.REJECTED_BY_TRANSPORTER, S.CANCELLED_BY_TRANSPORTER}
    ),
    (ActorRole.TRANSPORTER, S.ACCEPTED_BY_TRANSPORTER): frozenset(
        {S.IN_TRANSIT, S.CANCELLED_BY_TRANSPORTER}
    ),
    (ActorRole.TRANSPORTER, S.IN_TRANSIT): frozenset(
        {S.DELIVERED, S.CANCELLED_BY_TRANSPORTER}
    ),
    (ActorRole.TRANSPORTER, S.DISPUTED): frozenset({S.RETURN_TO_WHOLESALER}),
}

TERMINAL_STATES: frozenset[str] = frozenset(
    {
        S.REJECTED,
        S.CANCELLED_BY_RETAILER,
        S.CANCELLED_BY_WHOLESALER,
        S.RETURN_ACCEPTED,
    }
)

# Entering ``assigned_to_transporter`` from one of these starts a fresh
# assignment: cancellation, dispute and return records are cleared.
REASSIGNMENT_SOURCES: frozenset[str] = frozenset(
    {
        S.REJECTED_BY_TRANSPORTER,
        S.CANCELLED_BY_TRANSPORTER,
        S.DISPUTED,
        S.RETURN_REJECTED,
    }
)

DELETABLE_STATUSES: frozenset[str] = frozenset(
    {
        S.PENDING,
        S.REJECTED,
        S.RETURN_REJECTED,
        S.RETURN_ACCEPTED,
        S.CANCELLED_BY_WHOLESALER,
    }
)

COMPLETED_STATUSES: frozenset[str] = frozenset({S.DELIVERED, S.CERTIFIED})

OPEN_STATUSES: frozenset[str] = frozenset(
    {
        S.PENDING,
        S.ACCEPTED,
        S.PROCESSING,
        S.ASSIGNED_TO_TRANSPORTER,
        S.IN_TRANSIT,
    }
)

TRANSPORTER_EXIT_STATUSES: frozenset[str] = frozenset(
    {S.REJECTED_BY_TRANSPORTER, S.CANCELLED_BY_TRANSPORTER}
)

ORDER_NUMBER_MAX_RETRIES = 5
