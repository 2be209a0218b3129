import pytest
from django.core.cache import cache

from apps.checkout import providers


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYMENTS_KEY_SECRET = "test-gateway-secret"
    settings.PAYMENTS_KEY_ID = "rzp_test_key"
    providers.reset_stubs()
    # Throttle counters live in the cache
    cache.clear()
    yield
    providers.reset_stubs()
