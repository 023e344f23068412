import os

os.environ.setdefault("ENV", "test")

import pytest  # noqa: E402

from dmsync.backend.local import LocalBackend, LocalServer  # noqa: E402
from dmsync.config import Settings  # noqa: E402
from dmsync.db import DatabaseManager  # noqa: E402

pytest_plugins = [
    "tests.fixtures.user_fixtures",
    "tests.fixtures.backend_fixtures",
]


@pytest.fixture(scope="function")
def settings():
    """Settings with short timers so timing tests stay fast."""
    return Settings(
        bootstrap_timeout_ms=200,
        search_debounce_ms=20,
        message_page_size=100,
        request_timeout_seconds=2.0,
    )


@pytest.fixture(scope="function")
def db_manager():
    manager = DatabaseManager("sqlite+pysqlite:///:memory:")
    manager.create_all()
    yield manager
    manager.drop_all()
    manager.dispose()


@pytest.fixture(scope="function")
def server(db_manager, settings):
    return LocalServer(db_manager=db_manager, settings=settings)


@pytest.fixture(scope="function")
def make_backend(server):
    """Factory for additional clients connected to the same server."""

    def factory(**kwargs) -> LocalBackend:
        return LocalBackend(server, **kwargs)

    return factory


@pytest.fixture(scope="function")
def backend(make_backend):
    return make_backend()
