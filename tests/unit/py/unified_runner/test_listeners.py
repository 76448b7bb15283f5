"""Unit tests for event and log capture."""

import logging

import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock

from unified_runner.listeners import EventListener, LogInterceptor


def command(name, **body):
    return SimpleNamespace(
        command_name=name, command=dict({name: 1}, **body), database_name="admin",
        service_id=None, server_connection_id=7,
    )


def reply(name):
    return SimpleNamespace(
        command_name=name, reply={"ok": 1}, database_name="admin",
        service_id=None, server_connection_id=7,
    )


class TestCommandEvents:
    """P0 Critical: which command events are recorded."""

    @pytest.mark.p0
    def test_only_observed_events_recorded(self):
        listener = EventListener(observe_events=["commandStartedEvent"])

        listener.started(command("ping"))
        listener.succeeded(reply("ping"))

        events = listener.get_events()
        assert len(events) == 1
        assert events[0]["commandStartedEvent"]["commandName"] == "ping"
        assert events[0]["commandStartedEvent"]["hasServerConnectionId"] is True
        assert events[0]["commandStartedEvent"]["hasServiceId"] is False

    @pytest.mark.p0
    def test_ignored_commands(self):
        listener = EventListener(
            observe_events=["commandStartedEvent"], ignore_commands=["configureFailPoint"]
        )

        listener.started(command("configureFailPoint"))

        assert listener.get_events() == []

    @pytest.mark.p0
    def test_sensitive_commands_hidden_by_default(self):
        listener = EventListener(observe_events=["commandStartedEvent", "commandSucceededEvent"])

        listener.started(command("saslStart"))
        listener.succeeded(reply("saslStart"))
        listener.started(command("hello", speculativeAuthenticate={"mechanism": "SCRAM-SHA-256"}))
        listener.started(command("hello"))

        events = listener.get_events()
        assert len(events) == 1
        assert events[0]["commandStartedEvent"]["commandName"] == "hello"

    def test_sensitive_commands_observed_when_requested(self):
        listener = EventListener(observe_events=["commandStartedEvent"], observe_sensitive_commands=True)

        listener.started(command("saslStart"))

        assert len(listener.get_events()) == 1

    def test_failed_event(self):
        listener = EventListener(observe_events=["commandFailedEvent"])

        listener.failed(reply("insert"))

        assert listener.get_events() == [{"commandFailedEvent": {
            "commandName": "insert",
            "databaseName": "admin",
            "hasServiceId": False,
            "hasServerConnectionId": True,
        }}]


class TestOtherEvents:
    """P1: pool and topology events."""

    @pytest.mark.p1
    def test_checked_out_counter(self):
        listener = EventListener(observe_events=["connectionCheckedOutEvent"])

        listener.connection_checked_out(MagicMock())
        listener.connection_checked_out(MagicMock())
        listener.connection_checked_in(MagicMock())

        assert listener.num_connections_checked_out == 1
        assert len(listener.get_events()) == 2

    @pytest.mark.p1
    def test_family_filter(self):
        listener = EventListener(observe_events=["poolCreatedEvent", "commandStartedEvent"])

        listener.pool_created(MagicMock())
        listener.started(command("ping"))

        assert list(listener.get_events("cmap")[0]) == ["poolCreatedEvent"]
        assert list(listener.get_events("command")[0]) == ["commandStartedEvent"]

    def test_stored_events_callback(self):
        stored = []
        listener = EventListener(
            store_events={"events0": ["poolClearedEvent"]},
            on_stored_event=lambda entity_id, document: stored.append((entity_id, document)),
        )

        listener.pool_cleared(SimpleNamespace(service_id=None, interrupt_connections=True))

        entity_id, document = stored[0]
        assert entity_id == "events0"
        assert document["name"] == "poolClearedEvent"
        assert document["interruptInUseConnections"] is True
        assert listener.get_events() == []

    def test_clear(self):
        listener = EventListener(observe_events=["poolReadyEvent"])
        listener.pool_ready(MagicMock())

        listener.clear()

        assert listener.get_events() == []


def record(name, message, level=logging.DEBUG):
    return logging.makeLogRecord({
        "name": name, "levelno": level, "levelname": logging.getLevelName(level), "msg": message,
    })


class TestLogInterceptor:
    """P1: structured driver log capture."""

    @pytest.mark.p1
    def test_captures_configured_component(self):
        interceptor = LogInterceptor({"command": "debug"}, topology_id=1)

        interceptor.emit(record("pymongo.command", '{"message": "Command started", "clientId": 1}'))

        assert interceptor.get_messages() == [{
            "level": "debug",
            "component": "command",
            "data": {"message": "Command started", "clientId": 1},
        }]

    @pytest.mark.p1
    def test_other_clients_filtered(self):
        interceptor = LogInterceptor({"command": "debug"}, topology_id=1)

        interceptor.emit(record("pymongo.command", '{"message": "Command started", "clientId": 2}'))

        assert interceptor.get_messages() == []

    def test_unconfigured_component_and_low_level_filtered(self):
        interceptor = LogInterceptor({"command": "info"})

        interceptor.emit(record("pymongo.connection", '{"message": "Connection created"}'))
        interceptor.emit(record("pymongo.command", '{"message": "Command started"}'))

        assert interceptor.get_messages() == []

    def test_plain_text_message(self):
        interceptor = LogInterceptor({"topology": "debug"})

        interceptor.emit(record("pymongo.topology", "not json"))

        assert interceptor.get_messages()[0]["data"] == {"message": "not json"}

    def test_install_and_uninstall(self):
        interceptor = LogInterceptor({"command": "debug"})
        logger = logging.getLogger("pymongo")

        interceptor.install()
        try:
            assert interceptor in logger.handlers
        finally:
            interceptor.uninstall()

        assert interceptor not in logger.handlers

    @pytest.mark.p1
    def test_uninstall_restores_logger_level(self):
        """The driver logger level is restored once the last interceptor leaves."""
        logger = logging.getLogger("pymongo")
        original = logger.level
        logger.setLevel(logging.WARNING)
        first = LogInterceptor({"command": "debug"})
        second = LogInterceptor({"topology": "debug"})
        try:
            first.install()
            second.install()
            assert logger.level == logging.DEBUG

            first.uninstall()
            assert logger.level == logging.DEBUG

            second.uninstall()
            assert logger.level == logging.WARNING

            second.uninstall()
            assert logger.level == logging.WARNING
        finally:
            first.uninstall()
            second.uninstall()
            logger.setLevel(original)
