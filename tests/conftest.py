"""
Pytest configuration for the Ascended API tests

Fixtures build a fresh app per test against a temporary database.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from ascended.observability.telemetry import reset_counters
from ascended.storage.repositories import Storage
from tests.support import FakeClock, FakeOidc, build_app


@pytest.fixture(autouse=True)
def _clean_counters():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oidc() -> FakeOidc:
    return FakeOidc()


@pytest.fixture
def app_and_storage(tmp_path, clock, oidc):
    return build_app(tmp_path, clock=clock, oidc=oidc)


@pytest.fixture
def storage(app_and_storage) -> Storage:
    return app_and_storage[1]


@pytest.fixture
def client(app_and_storage) -> TestClient:
    return TestClient(app_and_storage[0])
