"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.deps import get_booking_crud, get_mailer
from app.errors import install_exception_handlers
from app.routers.booking import router

from .fakes import InMemoryBookingCRUD
from .factories import booking_record

# ---------------------------------------------------------------------------
# Redis: never reach a real server from tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def redis_mock():
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.setex = AsyncMock(return_value=True)
    mock.delete = AsyncMock(return_value=1)
    with patch("app.cache.get_redis", return_value=mock):
        yield mock


# ---------------------------------------------------------------------------
# Collaborator mocks
# ---------------------------------------------------------------------------


def make_mailer(sent: bool = True) -> MagicMock:
    mock = MagicMock()
    mock.send_booking_confirmation = AsyncMock(return_value=sent)
    return mock


# ---------------------------------------------------------------------------
# App builder, used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(crud=None, mailer=None) -> FastAPI:
    """
    Fresh FastAPI app mounted like the real one, with storage and mailer
    dependencies overridden. Defaults to an empty in-memory store and a
    mailer that always succeeds.
    """
    app = FastAPI()
    install_exception_handlers(app)
    app.include_router(router, prefix="/api")

    store = crud if crud is not None else InMemoryBookingCRUD()
    ml = mailer if mailer is not None else make_mailer()
    app.dependency_overrides[get_booking_crud] = lambda: store
    app.dependency_overrides[get_mailer] = lambda: ml

    return app


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store():
    """In-memory store holding one PENDING booking (factories.BOOKING_ID)."""
    return InMemoryBookingCRUD([booking_record()])


@pytest.fixture()
def mailer():
    return make_mailer()


@pytest.fixture()
def client(store, mailer):
    return TestClient(build_app(store, mailer), raise_server_exceptions=True)


@pytest.fixture()
def client_factory():
    def _make(crud=None, mailer=None, raise_server_exceptions=True) -> TestClient:
        return TestClient(
            build_app(crud, mailer), raise_server_exceptions=raise_server_exceptions
        )

    return _make
