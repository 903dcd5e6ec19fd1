import pytest
from fastapi.testclient import TestClient

from receipt_api.core.config import Settings
from receipt_api.main import create_app
from receipt_api.services.kv_store import build_store


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {"API_KEY": None, "KV_URL": None, "ENVIRONMENT": "test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    kv = build_store("memory://", clock=clock)
    try:
        yield kv
    finally:
        kv.close()


@pytest.fixture
def client(store, clock):
    app = create_app(make_settings(), store=store, clock=clock)
    return TestClient(app)
