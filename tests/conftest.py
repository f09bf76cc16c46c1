# tests/conftest.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from bma.database import Store
from bma.main import create_app
from bma.service import BMAService
from tests.utils import FakeClock, FakeExtractor, FakeGenerator


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = Store(engine)
    store.init_schema()
    yield store
    engine.dispose()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store, extractor, generator, clock) -> BMAService:
    return BMAService(store, extractor, generator, clock=clock)


@pytest.fixture
def client(service):
    app = create_app(service=service)
    with TestClient(app) as c:
        yield c
