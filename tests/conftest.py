import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Settings are read from ``STOCKKEEPER_*`` variables once and cached, so the
    environment is prepared before anything imports the application.
    """
    os.environ["STOCKKEEPER_ENV"] = session.config.option.env
    os.environ["STOCKKEEPER_SWEEPER_ENABLED"] = "false"
    os.environ.setdefault("STOCKKEEPER_CONFLICT_RETRY_BACKOFF_SECONDS", "0.01")

    from shared.config import get_settings

    get_settings.cache_clear()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        # Get the test file path relative to the tests directory
        test_path = Path(item.fspath)

        # Mark tests based on their directory
        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session", autouse=True)
def setup_db(tmp_path_factory):
    from shared.database import configure_database, drop_db, setup_db

    # A file, not :memory:, so that threads in concurrency tests share it
    database_path = tmp_path_factory.mktemp("db") / "stockkeeper.db"
    engine = configure_database(f"sqlite:///{database_path}")
    setup_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def run_around_tests():
    """Fixture to automatically cleanup infrastructure after every test"""
    yield

    from payments.gateway import reset_gateway
    from shared.database import truncate_all

    truncate_all()
    reset_gateway()


@pytest.fixture()
def override_settings(monkeypatch):
    """Set ``STOCKKEEPER_*`` values for one test: ``override_settings(restock_on_refund=True)``."""
    from shared.config import get_settings

    def _override(**values):
        for key, value in values.items():
            monkeypatch.setenv(f"STOCKKEEPER_{key.upper()}", str(value))
        get_settings.cache_clear()
        return get_settings()

    yield _override

    get_settings.cache_clear()


@pytest.fixture()
def session():
    """A session inside an open transaction, committed when the test ends."""
    from shared.database import get_session_factory

    db_session = get_session_factory()()
    with db_session.begin():
        yield db_session
    db_session.close()
