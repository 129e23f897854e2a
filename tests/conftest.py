from __future__ import annotations

from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from modules.core.authentication import Principal, issue_access_token
from modules.orders.constants import OrderStatus
from modules.orders.dtos import CreateOrderDTO, UpdateOrderStatusDTO
from modules.orders.views import build_order_service
from modules.products.models import Product

RETAILER_ID = "retailer-1"
WHOLESALER_ID = "wholesaler-1"
TRANSPORTER_ID = "transporter-1"

# Happy path from ``pending`` into the dispute/return branch.  Every status
# the fixtures can reach lies on this path, except ``certified``.
LIFECYCLE_PATH = [
    ("wholesaler", OrderStatus.ACCEPTED, {}),
    ("wholesaler", OrderStatus.PROCESSING, {}),
    (
        "wholesaler",
        OrderStatus.ASSIGNED_TO_TRANSPORTER,
        {"transporter_id": TRANSPORTER_ID},
    ),
    ("transporter", OrderStatus.ACCEPTED_BY_TRANSPORTER, {}),
    ("transporter", OrderStatus.IN_TRANSIT, {}),
    ("transporter", OrderStatus.DELIVERED, {}),
    ("retailer", OrderStatus.DISPUTED, {"reason": "Two bags arrived torn"}),
    (
        "transporter",
        OrderStatus.RETURN_TO_WHOLESALER,
        {"reason": "Retailer refused the damaged goods"},
    ),
]


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Throttle counters live in the cache; start every test from zero."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@pytest.fixture()
def retailer():
    return Principal(user_id=RETAILER_ID, role="retailer")


@pytest.fixture()
def other_retailer():
    return Principal(user_id="retailer-2", role="retailer")


@pytest.fixture()
def wholesaler():
    return Principal(user_id=WHOLESALER_ID, role="wholesaler")


@pytest.fixture()
def other_wholesaler():
    return Principal(user_id="wholesaler-2", role="wholesaler")


@pytest.fixture()
def transporter():
    return Principal(user_id=TRANSPORTER_ID, role="transporter")


@pytest.fixture()
def other_transporter():
    return Principal(user_id="transporter-2", role="transporter")


@pytest.fixture()
def admin():
    return Principal(user_id="admin-1", role="admin")


@pytest.fixture()
def client_for():
    """Build an APIClient that authenticates as the given principal."""

    def _client_for(principal: Principal) -> APIClient:
        client = APIClient()
        token = issue_access_token(principal.user_id, principal.role)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _client_for


# ---------------------------------------------------------------------------
# Catalog and orders
# ---------------------------------------------------------------------------


@pytest.fixture()
def product():
    return Product.objects.create(
        wholesaler_id=WHOLESALER_ID,
        sku="MAIZE-25",
        name="Maize flour 25kg",
        category="Grains",
        measurement_unit="bags",
        price=Decimal("20.00"),
        quantity=100,
        min_order_quantity=1,
    )


@pytest.fixture()
def order_service():
    return build_order_service()


@pytest.fixture()
def make_order(order_service, retailer, product):
    """Place an order as ``retailer`` (defaults: 10 units of ``product``)."""

    def _make_order(quantity: int = 10, actor: Principal | None = None, **overrides):
        dto = CreateOrderDTO(
            product_id=overrides.pop("product_id", product.id),
            quantity=quantity,
            delivery_place=overrides.pop("delivery_place", "Kiosk 4, Central Market"),
            **overrides,
        )
        return order_service.create_order(actor or retailer, dto)

    return _make_order


@pytest.fixture()
def walk_to(order_service, retailer, wholesaler, transporter):
    """Drive an order through the lifecycle until it reaches *status*."""
    actors = {"retailer": retailer, "wholesaler": wholesaler, "transporter": transporter}

    def _walk_to(order, status: str):
        if status == OrderStatus.CERTIFIED:
            order = _walk_to(order, OrderStatus.DELIVERED)
            return order_service.update_status(
                retailer, str(order.id), UpdateOrderStatusDTO(status=status)
            ).order

        for role, target, extra in LIFECYCLE_PATH:
            if order.status == status:
                break
            order = order_service.update_status(
                actors[role], str(order.id), UpdateOrderStatusDTO(status=target, **extra)
            ).order
        assert order.status == status, f"{status} is not on the fixture path"
        return order

    return _walk_to


@pytest.fixture()
def order_in(make_order, walk_to):
    """Place an order and walk it to *status*."""

    def _order_in(status: str, quantity: int = 10):
        return walk_to(make_order(quantity=quantity), status)

    return _order_in
