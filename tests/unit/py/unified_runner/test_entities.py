"""Unit tests for the entity registry."""

import pytest
from unittest.mock import MagicMock, PropertyMock

from pymongo.errors import InvalidOperation

from unified_runner.constants import EntityKind
from unified_runner.entities import ClientSettings, EntityRegistry
from unified_runner.errors import ConfigurationError, EntityNotFoundError


CLIENT = {"client": {"id": "client0", "observeEvents": ["commandStartedEvent"]}}
DATABASE = {"database": {"id": "database0", "client": "client0", "databaseName": "test"}}
COLLECTION = {"collection": {"id": "collection0", "database": "database0", "collectionName": "coll"}}


class TestEntityCreation:
    """P0 Critical: createEntities in declaration order."""

    @pytest.mark.p0
    def test_creates_client_database_collection(self, registry, mock_factories):
        registry.init([CLIENT, DATABASE, COLLECTION])

        client = registry.get_client("client0")
        assert registry.get_database("database0") is client.get_database.return_value
        assert registry.kind_of("collection0") == EntityKind.COLLECTION
        assert len(registry) == 3

        settings = mock_factories.create_client.call_args[0][0]
        assert isinstance(settings, ClientSettings)
        assert settings.uri == "mongodb://localhost:27017"
        assert len(settings.event_listeners) == 1

    @pytest.mark.p0
    def test_forward_reference_is_configuration_error(self, registry):
        """An entity can only reference ids declared before it."""
        with pytest.raises(ConfigurationError):
            registry.init([DATABASE, CLIENT])

    @pytest.mark.p0
    def test_duplicate_id_is_configuration_error(self, registry):
        registry.init([CLIENT])

        with pytest.raises(ConfigurationError):
            registry.init([CLIENT])

    @pytest.mark.p0
    def test_wrong_kind_lookup(self, registry):
        registry.init([CLIENT])

        with pytest.raises(EntityNotFoundError) as exc_info:
            registry.get_session("client0")

        assert exc_info.value.actual_kind == EntityKind.CLIENT

    def test_unknown_entity_type(self, registry):
        with pytest.raises(ConfigurationError):
            registry.init([{"spaceship": {"id": "x"}}])

    def test_entity_spec_without_id(self, registry):
        with pytest.raises(ConfigurationError):
            registry.init([{"client": {}}])

    @pytest.mark.p0
    @pytest.mark.parametrize("spec,missing", [
        ({"database": {"id": "db1", "client": "client0"}}, "databaseName"),
        ({"database": {"id": "db1", "databaseName": "test"}}, "client"),
        ({"collection": {"id": "coll1", "database": "database0"}}, "collectionName"),
        ({"session": {"id": "session1"}}, "client"),
        ({"bucket": {"id": "bucket1"}}, "database"),
        ({"clientEncryption": {"id": "ce1"}}, "clientEncryptionOpts"),
        ({"client": {"id": "client1", "storeEventsAsEntities": [{"id": "events1"}]}}, "events"),
    ])
    def test_missing_required_field_is_configuration_error(self, registry, spec, missing):
        registry.init([
            {"client": {"id": "client0"}},
            {"database": {"id": "database0", "client": "client0", "databaseName": "test"}},
        ])

        with pytest.raises(ConfigurationError, match=missing):
            registry.init([spec])

    def test_uri_options_merged_over_config_defaults(self, mock_factories, runner_config):
        runner_config.client_defaults = {"heartbeatFrequencyMS": 500, "retryWrites": True}
        registry = EntityRegistry(mock_factories, runner_config)

        registry.init([{"client": {"id": "client0", "uriOptions": {"retryWrites": False}}}])

        settings = mock_factories.create_client.call_args[0][0]
        assert settings.uri_options == {"heartbeatFrequencyMS": 500, "retryWrites": False}

    def test_store_events_as_entities(self, registry):
        registry.init([{"client": {
            "id": "client0",
            "storeEventsAsEntities": [{"id": "events0", "events": ["poolCreatedEvent"]}],
        }}])

        registry.get_listener("client0").pool_created(MagicMock())

        stored = registry.get_document_list("events0")
        assert len(stored) == 1
        assert stored[0]["name"] == "poolCreatedEvent"
        assert "observedAt" in stored[0]

    def test_client_encryption_needs_key_vault_client(self, registry):
        with pytest.raises(ConfigurationError):
            registry.init([{"clientEncryption": {"id": "ce0", "clientEncryptionOpts": {}}}])

    def test_thread_entity(self, registry):
        registry.init([{"thread": {"id": "thread0"}}])

        assert registry.get_thread("thread0").thread_id == "thread0"


class TestSessionLsid:
    """P1: lsid lookups survive the end of the session."""

    @pytest.mark.p1
    def test_lsid_after_session_ended(self, registry):
        registry.init([CLIENT])
        session = MagicMock()
        session.session_id = {"id": b"\x01"}
        registry.get_client("client0").start_session.return_value = session
        registry.init([{"session": {"id": "session0", "client": "client0"}}])

        type(session).session_id = PropertyMock(side_effect=InvalidOperation("Cannot use ended session"))

        assert registry.get_session_lsid("session0") == {"id": b"\x01"}

    def test_client_id_of_session(self, registry):
        registry.init([CLIENT])
        client = registry.get_client("client0")
        client.start_session.return_value = MagicMock(client=client)
        registry.init([{"session": {"id": "session0", "client": "client0"}}])

        assert registry.client_id_of_session("session0") == "client0"


class TestCounters:
    """P1: loop accounting entities."""

    @pytest.mark.p1
    def test_counters_created_on_first_use(self, registry):
        registry.add_success_count("successes", 1)
        registry.add_success_count("successes", 2)

        assert registry.get_counter("successes") == 3

    @pytest.mark.p1
    def test_document_lists_accumulate(self, registry):
        registry.add_failure_documents("failures", [{"error": "a"}])
        registry.add_error_documents("failures", [{"error": "b"}])

        assert [d["error"] for d in registry.get_document_list("failures")] == ["a", "b"]

    def test_counter_kind_conflict(self, registry):
        registry.add_failure_documents("results", [])

        with pytest.raises(EntityNotFoundError):
            registry.add_success_count("results", 1)


class TestClose:
    """P0 Critical: every releasable entity released exactly once."""

    @pytest.mark.p0
    def test_close_releases_in_reverse_order(self, registry):
        released = []
        registry.init([CLIENT])
        client = registry.get_client("client0")
        client.close.side_effect = lambda: released.append("client0")
        session = MagicMock()
        session.end_session.side_effect = lambda: released.append("session0")
        client.start_session.return_value = session
        registry.init([{"session": {"id": "session0", "client": "client0"}}])

        registry.close()

        assert released == ["session0", "client0"]

    @pytest.mark.p0
    def test_close_continues_past_failures(self, registry):
        registry.init([CLIENT])
        client = registry.get_client("client0")
        session = MagicMock()
        session.end_session.side_effect = RuntimeError("server gone")
        client.start_session.return_value = session
        registry.init([{"session": {"id": "session0", "client": "client0"}}])

        failures = registry.close()

        assert len(failures) == 1
        assert "server gone" in str(failures[0])
        client.close.assert_called_once()

    @pytest.mark.p0
    def test_close_is_idempotent(self, registry):
        registry.init([CLIENT])
        client = registry.get_client("client0")

        registry.close()
        assert registry.close() == []

        client.close.assert_called_once()

    def test_values_are_not_released(self, registry):
        value = MagicMock()
        registry.put("result0", EntityKind.VALUE, value)

        registry.close()

        value.close.assert_not_called()
