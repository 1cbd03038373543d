"""
Shared fixtures and step definitions for BDD tests.

- runner, app, context: available to all scenario files in this directory
- app: in-memory store, clock fixed at NOW, MagicMock email relay
- no_logging: autouse, prevents log file creation during tests
- 'the output contains' step: shared across all feature files
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner
from pytest_bdd import then, parsers

from visittrack.app import App
from visittrack.bus.events import EventBus
from visittrack.db.kv import MemoryKeyValueStore
from visittrack.engine.email_composer import EmailComposer
from visittrack.engine.hotels import ensure_hotels
from visittrack.engine.tiered_store import TieredStore

NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def app():
    kv = MemoryKeyValueStore()
    bus = EventBus()
    store = TieredStore(kv, bus=bus, clock=lambda: NOW)
    ensure_hotels(kv)
    relay = MagicMock()
    relay.send.return_value = 'OK'
    composer = EmailComposer(
        kv, relay, sender_name='Oscar', sender_email='oscar@wellness.co.uk',
        sender_company='Wellness Partners', bus=bus, clock=lambda: NOW,
    )
    return App(kv=kv, store=store, composer=composer, bus=bus)


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("visittrack.cli.main.configure_logging"):
        yield


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )
