"""Shared fixtures for lab_shells tests."""

import os

import pytest

from lab_shells.config import GatewayConfig
from lab_shells.events import EventBus
from tests.mocks.session_mock import MockAdapterFactory


@pytest.fixture
def config():
    """Defaults with short timers so failing tests fail fast."""
    return GatewayConfig(handshake_timeout=2.0, connect_timeout=1.0, stop_grace_period=0.5)


@pytest.fixture
def event_bus():
    """Private bus so tests never see each other's events."""
    return EventBus()


@pytest.fixture
def factory():
    return MockAdapterFactory()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's LAB_SHELLS_* settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("LAB_SHELLS_"):
            monkeypatch.delenv(key, raising=False)
