"""Settings loading, validation and container wiring."""
import logging

import pytest
import structlog
from dependency_injector import providers
from pydantic import ValidationError

from relaychat.core.config import RelaySettings
from relaychat.core.logging import LOGGER_NAME
from relaychat.core.container import Container
from relaychat.services.relay.connection import ConnectionManager
from relaychat.services.relay.notifier import CatalogTranslator

from tests.conftest import FakeIdentity, RecordingDispatcher, RecordingProcessor


def test_defaults():
    settings = RelaySettings()
    assert settings.push_timeout == 10.0
    assert settings.heartbeat_interval == 30.0
    assert settings.protocol_vsn == "2.0.0"
    assert settings.reconnect_enabled is False
    assert settings.reconnect_backoff == [1.0, 2.0, 5.0, 10.0]


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("RELAY_RELAY_URLS", '["wss://relay.test/socket"]')
    monkeypatch.setenv("RELAY_PUSH_TIMEOUT", "2.5")
    monkeypatch.setenv("RELAY_RECONNECT_ENABLED", "true")

    settings = RelaySettings()

    assert settings.relay_urls == ["wss://relay.test/socket"]
    assert settings.push_timeout == 2.5
    assert settings.reconnect_enabled is True


def test_rejects_non_websocket_relay():
    with pytest.raises(ValidationError):
        RelaySettings(relay_urls=["https://relay.test"])


def test_rejects_bad_backoff_and_vsn():
    with pytest.raises(ValidationError):
        RelaySettings(reconnect_backoff=[])
    with pytest.raises(ValidationError):
        RelaySettings(reconnect_backoff=[1.0, -1.0])
    with pytest.raises(ValidationError):
        RelaySettings(protocol_vsn="3.0.0")


def test_log_level_is_normalised():
    assert RelaySettings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        RelaySettings(log_level="chatty")


def test_translator_falls_back_to_key():
    translator = CatalogTranslator({"custom.key": "Hello {name}"})
    assert translator.t("custom.key", name="relay") == "Hello relay"
    assert translator.t("custom.key", other="x") == "Hello {name}"
    assert translator.t("missing.key") == "missing.key"


def test_container_builds_connection_manager():
    container = Container()
    container.settings.override(providers.Object(RelaySettings(relay_urls=["wss://relay.test/socket"])))
    container.identity.override(providers.Object(FakeIdentity()))
    container.processor.override(providers.Object(RecordingProcessor()))
    container.dispatcher.override(providers.Object(RecordingDispatcher()))

    manager = container.connection_manager()

    assert isinstance(manager, ConnectionManager)
    assert manager is container.connection_manager()
    assert manager.relays.get_relay().socket == "wss://relay.test/socket"
    assert manager.user_channel_id() == "0ab1"


def test_container_resources_configure_logging():
    container = Container()
    container.settings.override(providers.Object(RelaySettings(log_level="error")))
    package_logger = logging.getLogger(LOGGER_NAME)
    try:
        container.init_resources()
        assert package_logger.level == logging.ERROR
        assert package_logger.handlers
    finally:
        container.shutdown_resources()
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()
        package_logger.setLevel(logging.NOTSET)
        package_logger.propagate = True
        structlog.reset_defaults()
