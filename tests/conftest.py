"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; the app refuses to start without a session secret.
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import base64
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import BytesIO

import httpx
import pytest
from PIL import Image
from sqlalchemy import JSON, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockroom.models import Base, Product, User
from stockroom.services.ai.base import AIProvider


# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)


def _patch_jsonb_to_json(base):
    """
    SQLite has no JSONB; swap the column type for JSON in tests only.
    """
    from sqlalchemy.dialects.postgresql import JSONB

    for table in base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()


MARKET_ANALYSIS = {
    "category": "Electronics > Headphones",
    "demandScore": 72,
    "competitionLevel": "medium",
    "priceSuggestion": {"min": 80, "max": 140},
    "seoKeywords": ["wireless headphones", "noise cancelling", "bluetooth", "over ear", "sony"],
    "suggestions": ["Photograph the ear pads", "Mention battery health", "List included accessories"],
}

IMAGE_ANALYSIS = {
    "title": "Sony WH-1000XM4 Wireless Noise Cancelling Headphones",
    "description": "Over-ear headphones in black with carrying case.",
    **MARKET_ANALYSIS,
}


class FakeProvider(AIProvider):
    """
    Replays queued answers. Dicts are sent as JSON text, exceptions are
    raised. An optional gate holds every call until it is set.
    """

    name = "fake"

    def __init__(self, responses=None, gate=None):
        self.responses = list(responses or [])
        self.calls = []
        self.gate = gate

    async def _answer(self, prompt, images=None):
        self.calls.append({"prompt": prompt, "images": list(images or [])})
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            raise AssertionError("FakeProvider has no queued response")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (dict, list)):
            return json.dumps(item)
        return item

    async def generate_text(self, prompt, model=None):
        return await self._answer(prompt)

    async def generate_with_images(self, prompt, images, model=None):
        return await self._answer(prompt, images)


def make_png(width=1200, height=800, color=(200, 30, 30, 128)) -> bytes:
    out = BytesIO()
    Image.new("RGBA", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def search_payload(prices, total=None) -> dict:
    payload = {"itemSummaries": [{"title": f"item {i}", "price": {"value": str(p), "currency": "USD"}} for i, p in enumerate(prices)]}
    if total is not None:
        payload["total"] = total
    return payload


def mock_transport(handler, requests=None) -> httpx.MockTransport:
    """MockTransport that also records every request it sees."""

    def record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    return httpx.MockTransport(record)


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory over a fresh in-memory database per test.
    """
    _patch_jsonb_to_json(Base)
    Base.metadata.create_all(bind=test_engine)
    try:
        yield TestSessionLocal
    finally:
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def test_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@pytest.fixture
def user(test_session) -> User:
    user = User(username="seller")
    test_session.add(user)
    test_session.commit()
    return user


@pytest.fixture
def connected_user(test_session) -> User:
    user = User(
        username="linked-seller",
        marketplace_access_token="v^1.1#access",
        marketplace_refresh_token="v^1.1#refresh",
        marketplace_token_expiry=datetime.now(timezone.utc) + timedelta(hours=2),
    )
    test_session.add(user)
    test_session.commit()
    return user


def _product_for(test_session, owner: User, **overrides) -> Product:
    values = dict(
        owner_user_id=owner.id,
        name="Sony WH-1000XM4",
        description="Wireless noise cancelling headphones, lightly used",
        condition="used_good",
        purchase_price=Decimal("50.00"),
        quantity=1,
    )
    values.update(overrides)
    product = Product(**values)
    test_session.add(product)
    test_session.commit()
    return product


@pytest.fixture
def product(test_session, user) -> Product:
    return _product_for(test_session, user)


@pytest.fixture
def connected_product(test_session, connected_user) -> Product:
    return _product_for(test_session, connected_user)


@pytest.fixture
def make_product(test_session):
    def factory(owner: User, **overrides) -> Product:
        return _product_for(test_session, owner, **overrides)

    return factory


# Test markers
def pytest_configure(config):
    """Register pytest markers."""
    config.addinivalue_line("markers", "unit: unit tests (no database)")
    config.addinivalue_line("markers", "integration: integration tests (database and mocked upstreams)")
    config.addinivalue_line("markers", "slow: slow tests")
