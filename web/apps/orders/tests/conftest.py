import pytest

from apps.orders.adapters import InMemoryStore, NotifierStub
from apps.orders.auth import Principal
from apps.orders.domain import CustomerSnapshot
from apps.orders.lifecycle import OrderLifecycle
from apps.orders.service import OrderService

from .factories import FIXED_NOW, purchase


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def notifier():
    return NotifierStub()


@pytest.fixture
def service(store, notifier):
    return OrderService(store, notifier, lifecycle=OrderLifecycle(enforce=True), clock=lambda: FIXED_NOW)


@pytest.fixture
def buyer():
    return Principal(user_id="user-1")


@pytest.fixture
def admin():
    return Principal(user_id="admin-1", is_admin=True)


@pytest.fixture
def customer():
    return CustomerSnapshot(name="Ada Lovelace", email="ada@example.com", phone="555-0100")


@pytest.fixture
def make_order(service, buyer, customer):
    def _make(items=None, principal=None):
        return service.create_order(principal or buyer, items or [purchase()], customer)

    return _make
