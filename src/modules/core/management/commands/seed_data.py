from __future__ import annotations

import random
from decimal import Decimal

from django.core.management.base import BaseCommand

from modules.core.authentication import ActorRole, Principal, issue_access_token
from modules.inventory.models import RetailerStock
from modules.orders.dtos import CreateOrderDTO, UpdateOrderStatusDTO
from modules.orders.models import Order
from modules.orders.views import build_order_service
from modules.products.models import Product

WHOLESALERS = ("wholesaler-1", "wholesaler-2")
RETAILERS = ("retailer-1", "retailer-2", "retailer-3")
TRANSPORTERS = ("transporter-1", "transporter-2")

# Status path walked for seeded orders, as (role, target) steps.
LIFECYCLE = [
    (ActorRole.WHOLESALER, "accepted"),
    (ActorRole.WHOLESALER, "processing"),
    (ActorRole.WHOLESALER, "assigned_to_transporter"),
    (ActorRole.TRANSPORTER, "accepted_by_transporter"),
    (ActorRole.TRANSPORTER, "in_transit"),
    (ActorRole.TRANSPORTER, "delivered"),
    (ActorRole.RETAILER, "certified"),
]


class Command(BaseCommand):
    help = "Seed database with realistic development data."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=20)
        parser.add_argument(
            "--tokens",
            action="store_true",
            help="Print an access token for every seeded principal.",
        )

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        products = self._seed_products()
        retailer_stock = self._seed_retailer_stock()
        orders_created = self._seed_orders(products, options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"products={len(products)}, "
                f"retailer_stock={retailer_stock}, "
                f"orders={orders_created}"
            )
        )
        if options["tokens"]:
            self._print_tokens()

    def _seed_products(self) -> list[Product]:
        self.stdout.write("Creating products...")
        products: list[Product] = []
        catalog = [
            ("GRN-001", "Maize flour", "Grains", "kg", Decimal("1.20"), 25),
            ("GRN-002", "Long grain rice", "Grains", "kg", Decimal("1.85"), 25),
            ("GRN-003", "Wheat flour", "Grains", "kg", Decimal("1.05"), 50),
            ("OIL-001", "Sunflower oil", "Oils", "litre", Decimal("3.40"), 12),
            ("OIL-002", "Palm oil", "Oils", "litre", Decimal("2.90"), 12),
            ("BEV-001", "Bottled water 500ml", "Beverages", "crate", Decimal("6.50"), 5),
            ("BEV-002", "Orange juice 1l", "Beverages", "crate", Decimal("14.00"), 2),
            ("HYG-001", "Bar soap", "Hygiene", "box", Decimal("9.90"), 4),
            ("HYG-002", "Toothpaste", "Hygiene", "box", Decimal("18.50"), 2),
            ("SUG-001", "White sugar", "Groceries", "kg", Decimal("0.95"), 50),
        ]
        for index, (sku, name, category, unit, price, min_qty) in enumerate(catalog):
            product, _ = Product.objects.get_or_create(
                sku=sku,
                defaults={
                    "wholesaler_id": WHOLESALERS[index % len(WHOLESALERS)],
                    "name": name,
                    "category": category,
                    "measurement_unit": unit,
                    "price": price,
                    "quantity": random.randint(1000, 5000),
                    "min_stock_level": 50,
                    "min_order_quantity": min_qty,
                    "bulk_discount_min_quantity": min_qty * 10,
                    "bulk_discount_percentage": Decimal(random.choice(["0", "5", "10"])),
                },
            )
            products.append(product)
        self.stdout.write(self.style.SUCCESS("Creating products... Done!"))
        return products

    def _seed_retailer_stock(self) -> int:
        self.stdout.write("Creating retailer stock...")
        created = 0
        for retailer_id in RETAILERS:
            for name, unit, price in (
                ("Cooking gas refill", "cylinder", Decimal("22.00")),
                ("Matches", "pack", Decimal("0.50")),
            ):
                _, was_created = RetailerStock.objects.get_or_create(
                    retailer_id=retailer_id,
                    name=name,
                    defaults={
                        "measurement_unit": unit,
                        "unit_price": price,
                        "quantity": random.randint(5, 60),
                        "min_stock_level": 10,
                    },
                )
                created += int(was_created)
        self.stdout.write(self.style.SUCCESS("Creating retailer stock... Done!"))
        return created

    def _seed_orders(self, products: list[Product], count: int) -> int:
        self.stdout.write("Creating orders...")
        if not products:
            self.stdout.write(self.style.WARNING("Skipping orders (no products)."))
            return 0

        service = build_order_service()
        orders_created = 0
        for i in range(count):
            product = random.choice(products)
            retailer = Principal(random.choice(RETAILERS), ActorRole.RETAILER)
            key = f"seed-order-{i + 1}"
            if Order.objects.filter(idempotency_key=key).exists():
                continue
            order = service.create_order(
                retailer,
                CreateOrderDTO(
                    product_id=product.id,
                    quantity=product.min_order_quantity * random.randint(1, 4),
                    delivery_place=f"Shop {i + 1}, Market Street",
                    order_notes=f"Seed order {i + 1}",
                    idempotency_key=key,
                ),
            )
            orders_created += 1

            actors = {
                ActorRole.RETAILER: retailer,
                ActorRole.WHOLESALER: Principal(order.wholesaler_id, ActorRole.WHOLESALER),
                ActorRole.TRANSPORTER: Principal(
                    random.choice(TRANSPORTERS), ActorRole.TRANSPORTER
                ),
            }
            for role, target in LIFECYCLE[: random.randint(0, len(LIFECYCLE))]:
                service.update_status(
                    actors[role],
                    str(order.id),
                    UpdateOrderStatusDTO(
                        status=target,
                        transporter_id=actors[ActorRole.TRANSPORTER].user_id
                        if target == "assigned_to_transporter"
                        else None,
                    ),
                )

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return orders_created

    def _print_tokens(self) -> None:
        principals = (
            [(user_id, ActorRole.WHOLESALER) for user_id in WHOLESALERS]
            + [(user_id, ActorRole.RETAILER) for user_id in RETAILERS]
            + [(user_id, ActorRole.TRANSPORTER) for user_id in TRANSPORTERS]
            + [("admin-1", ActorRole.ADMIN)]
        )
        for user_id, role in principals:
            self.stdout.write(f"{role:<12} {user_id:<14} {issue_access_token(user_id, role)}")
