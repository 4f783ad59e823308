import pytest
from fastapi.testclient import TestClient

from trendrelay.core.config import Settings
from trendrelay.main import create_app
from trendrelay.relay.service import RelayCore
from trendrelay.tests.helpers import BOT_KEY, CONTROLLER_KEY, FakeClock, ManualScheduler


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    """
    Pin credentials so nothing falls back to a developer's .env.
    """
    monkeypatch.setenv("CONTROLLER_KEY", CONTROLLER_KEY)
    monkeypatch.setenv("BOT_KEY", BOT_KEY)
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def settings():
    return Settings(CONTROLLER_KEY=CONTROLLER_KEY, BOT_KEY=BOT_KEY)


@pytest.fixture
def relay(settings, scheduler, clock):
    return RelayCore(settings, scheduler, clock=clock)


@pytest.fixture
def app(settings, scheduler, clock):
    return create_app(settings, scheduler=scheduler, clock=clock)


@pytest.fixture
def api(app):
    with TestClient(app) as c:
        yield c
