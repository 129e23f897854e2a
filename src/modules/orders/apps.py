from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.orders"
    label = "orders"

    def ready(self) -> None:
        from modules.orders import signals  # noqa: F401
        from modules.orders.events import (
            DisputeResolved,
            OrderCreated,
            OrderDeleted,
            OrderStatusChanged,
            ReturnHandled,
        )
        from modules.orders.handlers import (
            dispute_resolved_handler,
            order_created_handler,
            order_deleted_handler,
            order_status_changed_handler,
            return_handled_handler,
        )
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(OrderCreated, order_created_handler)
        event_bus.subscribe(OrderStatusChanged, order_status_changed_handler)
        event_bus.subscribe(DisputeResolved, dispute_resolved_handler)
        event_bus.subscribe(ReturnHandled, return_handled_handler)
        event_bus.subscribe(OrderDeleted, order_deleted_handler)
