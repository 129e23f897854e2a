"""Signals for automatic Order status history tracking.

The state machine leaves the actor and notes of a transition on the
instance (``_status_changed_by``, ``_status_changed_role``,
``_status_change_notes``); the post-save receiver turns them into exactly
one ``OrderStatusHistory`` row per status change.
"""

from __future__ import annotations

from typing import Optional, Protocol, cast

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from modules.orders.models import Order, OrderStatusHistory

_TRANSIENT_ATTRS = (
    "_previous_status",
    "_status_change_notes",
    "_status_changed_by",
    "_status_changed_role",
)


class _OrderStatusAware(Protocol):
    _previous_status: str | None
    _status_change_notes: str | None
    _status_changed_by: str | None
    _status_changed_role: str | None


@receiver(pre_save, sender=Order)
def _capture_previous_status(sender, instance: Order, **kwargs) -> None:
    status_instance = cast(_OrderStatusAware, instance)
    if instance._state.adding:
        status_instance._previous_status = None
        return
    previous_status = (
        sender.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
    )
    status_instance._previous_status = previous_status


@receiver(post_save, sender=Order)
def _create_status_history(sender, instance: Order, created: bool, **kwargs) -> None:
    status_instance = cast(_OrderStatusAware, instance)
    previous_status: Optional[str] = getattr(status_instance, "_previous_status", None)
    notes = getattr(status_instance, "_status_change_notes", None)

    should_create = created or previous_status != instance.status
    if not should_create:
        _clear_transient_status_attrs(instance)
        return

    if created and notes is None:
        notes = "Order created"

    changed_by = getattr(status_instance, "_status_changed_by", None)
    role = getattr(status_instance, "_status_changed_role", None)
    if created and changed_by is None:
        changed_by, role = instance.retailer_id, "retailer"

    OrderStatusHistory.objects.create(
        order=instance,
        old_status=previous_status,
        new_status=instance.status,
        changed_by=changed_by,
        role=role or "",
        notes=notes or "",
    )

    _clear_transient_status_attrs(instance)


def _clear_transient_status_attrs(instance: Order) -> None:
    for attr in _TRANSIENT_ATTRS:
        if hasattr(instance, attr):
            delattr(instance, attr)
