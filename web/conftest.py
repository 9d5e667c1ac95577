import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    from django.core.cache import cache

    from apps.orders import providers
    from apps.orders.http_adapters import _notifications_cb, _payments_cb

    settings.USE_HTTP_ADAPTERS = False
    settings.ORDER_STORE_BACKEND = "django"
    # throttle counters, process-wide stubs and breakers must not leak between tests
    cache.clear()
    providers._memory_store.cache_clear()
    providers._notifier_stub.cache_clear()
    _notifications_cb.on_success()
    _payments_cb.on_success()
