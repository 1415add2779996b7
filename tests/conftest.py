"""
Pytest configuration and fixtures for the page watcher test suite.
"""

import pytest

from tests.fakes import FakeStore, make_snapshot


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cooldowns and rate limits live in the cache; start each test clean."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def user_plan(db):
    """Create a pro-tier plan with an email address."""
    from watcher.models import UserPlan

    return UserPlan.objects.create(user_id="user-1", tier="pro", email="owner@example.com")


@pytest.fixture
def monitor(db):
    """Create an active Monitor row."""
    from watcher.models import Monitor

    return Monitor.objects.create(
        user_id="user-1",
        name="Test Monitor",
        url="https://shop.example.com/product/1",
        selector=".price",
        frequency="hourly",
    )
