import pytest

from modules.notifications.models import DevicePlatform, DeviceToken
from modules.orders.dtos import OrderEventDTO


@pytest.fixture()
def order_event(placed_order):
    """The ``OrderPlaced`` event of a freshly placed order, as a worker sees it."""
    return OrderEventDTO.from_payload(placed_order.outbox_events[0].payload)


@pytest.fixture()
def admin_device(staff_user):
    return DeviceToken.objects.create(
        owner=staff_user,
        token="ExponentPushToken[admin-phone]",
        platform=DevicePlatform.ANDROID,
    )
