"""Service provider helpers for wiring the orders services with ports.

The factories here return configured service instances. The document
store is chosen by ``settings.ORDER_STORE_BACKEND`` (``"django"`` for the
ORM-backed store, ``"memory"`` for a process-wide in-memory store). The
notifier and payments ports use the HTTP adapter clients when
``settings.USE_HTTP_ADAPTERS`` is truthy, and fast in-process stubs
otherwise, which is what tests and local development use.
"""

from decimal import Decimal
from functools import lru_cache

from django.conf import settings

from .adapters import InMemoryStore, NotifierStub, PaymentsStub
from .carts import CartService, WishlistService
from .checkout import CheckoutService
from .domain import NotifierPort, PaymentsPort, StorePort
from .http_adapters import HttpNotifierClient, HttpPaymentsClient
from .lifecycle import OrderLifecycle
from .repository import DjangoStore
from .service import OrderService


@lru_cache(maxsize=1)
def _memory_store() -> InMemoryStore:
    return InMemoryStore()


@lru_cache(maxsize=1)
def _notifier_stub() -> NotifierStub:
    return NotifierStub()


def get_store() -> StorePort:
    backend = getattr(settings, "ORDER_STORE_BACKEND", "django")
    if backend == "memory":
        return _memory_store()
    if backend == "django":
        return DjangoStore()
    raise ValueError(f"unknown ORDER_STORE_BACKEND {backend!r}")


def get_notifier() -> NotifierPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpNotifierClient()
    return _notifier_stub()


def get_payments() -> PaymentsPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpPaymentsClient()
    return PaymentsStub()


def get_lifecycle() -> OrderLifecycle:
    return OrderLifecycle(enforce=getattr(settings, "ORDER_ENFORCE_TRANSITIONS", True))


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Tax rate, shipping fee and the lifecycle enforcement switch come from
    settings so deployments can tune them without code changes.
    """
    return OrderService(
        store=get_store(),
        notifier=get_notifier(),
        lifecycle=get_lifecycle(),
        tax_rate=Decimal(str(getattr(settings, "ORDER_TAX_RATE", "0.08"))),
        shipping_fee=Decimal(str(getattr(settings, "ORDER_SHIPPING_FEE", "15.00"))),
    )


def get_cart_service() -> CartService:
    return CartService(get_store())


def get_wishlist_service() -> WishlistService:
    return WishlistService(get_store())


def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        carts=get_cart_service(),
        orders=get_order_service(),
        clear_retries=getattr(settings, "CART_CLEAR_RETRIES", 3),
    )
