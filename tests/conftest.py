from decimal import Decimal

import pytest

from django.contrib.auth import get_user_model

from rest_framework.test import APIClient

from modules.customers.models import Customer
from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.notifications.channels.push import InMemoryPushProvider
from modules.orders.dtos import PlaceOrderDTO, PlaceOrderItemDTO
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.payments.gateway import RazorpayGateway, set_gateway
from modules.products.models import Product, ProductStatus
from modules.products.repositories.django_repository import ProductDjangoRepository

User = get_user_model()


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _reset_collaborators():
    """Fresh in-memory push outbox and the configured payment gateway."""
    InMemoryPushProvider.reset()
    set_gateway(None)
    yield
    InMemoryPushProvider.reset()
    set_gateway(None)


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
# Users and customers
# ---------------------------------------------------------------------------


@pytest.fixture()
def staff_user():
    return User.objects.create_user(
        username="store-admin",
        password="testpass123",
        email="store-admin@example.com",
        is_staff=True,
    )


@pytest.fixture()
def shopper():
    return User.objects.create_user(
        username="shopper", password="testpass123", email="shopper@example.com"
    )


@pytest.fixture()
def customer(shopper):
    return Customer.objects.create(
        name="Asha Verma",
        email="asha@example.com",
        phone="9876543210",
        user=shopper,
        is_active=True,
    )


@pytest.fixture()
def inactive_customer():
    return Customer.objects.create(
        name="Dormant Buyer",
        email="dormant@example.com",
        is_active=False,
    )


@pytest.fixture()
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture()
def shopper_client(shopper, customer):
    client = APIClient()
    client.force_authenticate(user=shopper)
    return client


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.fixture()
def cake():
    return Product.objects.create(
        sku="CAKE-CHOC-1KG",
        name="Chocolate Truffle Cake",
        price=Decimal("800.00"),
        discount_percent=10,
        count_in_stock=10,
        status=ProductStatus.ACTIVE,
    )


@pytest.fixture()
def cupcakes():
    return Product.objects.create(
        sku="CUP-VAN-6",
        name="Vanilla Cupcakes (6)",
        price=Decimal("300.00"),
        count_in_stock=5,
        status=ProductStatus.ACTIVE,
    )


@pytest.fixture()
def retired_product():
    return Product.objects.create(
        sku="CAKE-RETIRED",
        name="Retired Cake",
        price=Decimal("500.00"),
        count_in_stock=10,
        status=ProductStatus.INACTIVE,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@pytest.fixture()
def gateway():
    return RazorpayGateway(key_id="rzp_test_key", key_secret="rzp_test_secret")


@pytest.fixture()
def service(gateway):
    return OrderService(
        order_repository=OrderDjangoRepository(),
        customer_repository=CustomerDjangoRepository(),
        product_repository=ProductDjangoRepository(),
        payment_gateway=gateway,
    )


@pytest.fixture()
def place_dto(customer, cake, cupcakes):
    return PlaceOrderDTO(
        customer_id=customer.id,
        items=[
            PlaceOrderItemDTO(product_id=cake.id, quantity=2),
            PlaceOrderItemDTO(product_id=cupcakes.id, quantity=1),
        ],
        notes="Leave at the gate",
    )


@pytest.fixture()
def placed_order(service, place_dto):
    return service.place_order(place_dto)
