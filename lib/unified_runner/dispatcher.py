"""Operation Dispatcher - map operation names to handlers and check their outcomes.

Entity operations (``object`` names an entity) live in the crud, gridfs and
encryption handler tables. Test-runner directives (``object: testRunner``)
are methods on the dispatcher because they need the registry, the fail-point
controller and the assertion context together.
"""
import logging
import time
from collections import abc
from typing import Any, Callable, Dict, Optional

from pymongo.errors import PyMongoError
from pymongo.synchronous.client_session import _TxnState

from . import crud, encryption_ops, gridfs_ops
from .config import RunnerConfig
from .constants import TEST_RUNNER_OBJECT
from .context import AssertionContext, ContextElement, describe
from .entities import EntityRegistry
from .error_matcher import ErrorMatcher
from .errors import ConfigurationError
from .event_matcher import EventMatcher
from .failpoint import FailPointController
from .loop import LoopRunner
from .matcher import ValueMatcher
from .options import parse_options
from .results import OperationResult, result_of
from .security import SecureLogger

logger = SecureLogger(logging.getLogger(__name__))

RESULT_OPTIONS = ("expectResult", "expectError", "saveResultAsEntity")


def _require(arguments: Dict[str, Any], name: str, *keys: str) -> None:
    missing = [key for key in keys if key not in arguments]
    if missing:
        raise ConfigurationError(f"{name} requires argument(s) {missing}")


def _primary_of(description) -> Optional[Any]:
    for address, server in description.server_descriptions().items():
        if server.server_type_name == "RSPrimary":
            return address
    return None


class OperationDispatcher:
    """Runs single operations and enforces their expected outcome."""

    def __init__(
        self,
        entities: EntityRegistry,
        failpoints: FailPointController,
        config: Optional[RunnerConfig] = None,
        utility_client: Any = None,
        should_terminate_loop: Optional[Callable[[], bool]] = None,
    ):
        self.entities = entities
        self.failpoints = failpoints
        self.config = config or RunnerConfig()
        self.utility_client = utility_client
        self.loop_runner = LoopRunner(self, entities, should_terminate_loop)

        self._entity_handlers: Dict[str, crud.Handler] = {}
        self._entity_handlers.update(crud.HANDLERS)
        self._entity_handlers.update(gridfs_ops.HANDLERS)
        self._entity_handlers.update(encryption_ops.HANDLERS)
        self._context_handlers = {"withTransaction": self._with_transaction}

        self._runner_handlers: Dict[str, Callable[[Dict[str, Any], AssertionContext], Any]] = {
            "createEntities": self._create_entities,
            "wait": self._wait,
            "waitForEvent": self._wait_for_event,
            "waitForPrimaryChange": self._wait_for_primary_change,
            "waitForThread": self._wait_for_thread,
            "recordTopologyDescription": self._record_topology_description,
            "assertTopologyType": self._assert_topology_type,
            "runOnThread": self._run_on_thread,
            "assertEventCount": self._assert_event_count,
            "failPoint": self._fail_point,
            "targetedFailPoint": self._targeted_fail_point,
            "assertSessionDirty": self._assert_session_dirty,
            "assertSessionNotDirty": self._assert_session_not_dirty,
            "assertSessionPinned": self._assert_session_pinned,
            "assertSessionUnpinned": self._assert_session_unpinned,
            "assertSameLsidOnLastTwoCommands": self._assert_same_lsid,
            "assertDifferentLsidOnLastTwoCommands": self._assert_different_lsid,
            "assertNumberConnectionsCheckedOut": self._assert_connections_checked_out,
            "assertSessionTransactionState": self._assert_transaction_state,
            "assertCollectionExists": self._assert_collection_exists,
            "assertCollectionNotExists": self._assert_collection_not_exists,
            "assertIndexExists": self._assert_index_exists,
            "assertIndexNotExists": self._assert_index_not_exists,
            "loop": self.loop_runner.loop,
        }

    @property
    def operation_names(self):
        return sorted(set(self._entity_handlers) | set(self._context_handlers) | set(self._runner_handlers))

    def execute(self, operation: Dict[str, Any], context: AssertionContext, index: int = 0) -> OperationResult:
        """Run one operation and capture its result or driver exception.

        Runner directives capture only driver errors (``PyMongoError``); a
        malformed directive or a failed assertion propagates.
        """
        if not isinstance(operation, abc.Mapping) or "name" not in operation or "object" not in operation:
            raise ConfigurationError(f"Operation needs a name and an object: {operation!r}")
        name = operation["name"]
        object_id = operation["object"]
        arguments = operation.get("arguments") or {}

        with context.frame(ContextElement.of_started_operation(operation, index)):
            if object_id == TEST_RUNNER_OBJECT:
                handler = self._runner_handlers.get(name)
                if handler is None:
                    raise ConfigurationError(f"Unsupported test runner operation {name!r}")
                try:
                    handler(arguments, context)
                except PyMongoError as e:
                    return OperationResult.of_exception(e)
                return OperationResult.NONE

            if name in self._context_handlers:
                return self._context_handlers[name](object_id, arguments, context)
            handler = self._entity_handlers.get(name)
            if handler is None:
                raise ConfigurationError(f"Unsupported operation {name!r} on entity {object_id!r}")
            return handler(self.entities, object_id, arguments)

    def assert_operation(self, context: AssertionContext, operation: Dict[str, Any], index: int = 0) -> OperationResult:
        """Execute ``operation`` and check it against its expectations."""
        ignore = operation.get("ignoreResultAndError", False)
        if ignore and any(key in operation for key in RESULT_OPTIONS):
            raise ConfigurationError(
                "ignoreResultAndError is incompatible with expectResult, expectError and saveResultAsEntity"
            )
        if "expectResult" in operation and "expectError" in operation:
            raise ConfigurationError("expectResult and expectError are mutually exclusive")

        result = self.execute(operation, context, index)
        name = operation["name"]

        with context.frame(ContextElement.of_completed_operation(operation, result, index)):
            if ignore:
                return result

            if "expectError" in operation:
                if not result.failed:
                    raise context.fail(
                        f"Expected an error but {name} succeeded with {describe(result.value)}"
                    )
                ErrorMatcher(context, self.entities).assert_errors_match(operation["expectError"], result.exception)
                return result

            if result.failed:
                error = result.exception
                raise context.fail(f"Operation {name} failed: {type(error).__name__}: {error}") from error

            self._check_success(context, operation, result)

        return result

    def _check_success(self, context: AssertionContext, operation: Dict[str, Any], result: OperationResult) -> None:
        if "expectResult" in operation:
            ValueMatcher(self.entities, context).assert_values_match(operation["expectResult"], result.value)
        if "saveResultAsEntity" in operation:
            self.entities.put(operation["saveResultAsEntity"], crud.save_kind(operation["name"]), result.value)

    def run_and_raise(self, context: AssertionContext, operation: Dict[str, Any], index: int = 0) -> OperationResult:
        """Like assert_operation, but an unexpected driver exception is re-raised as is.

        Used inside transaction callbacks so the driver sees its own error
        labels and can retry.
        """
        if "expectError" in operation or operation.get("ignoreResultAndError"):
            return self.assert_operation(context, operation, index)

        result = self.execute(operation, context, index)
        if result.failed:
            raise result.exception
        with context.frame(ContextElement.of_completed_operation(operation, result, index)):
            self._check_success(context, operation, result)
        return result

    def _with_transaction(self, object_id: str, arguments: Dict[str, Any], context: AssertionContext) -> OperationResult:
        session = self.entities.get_session(object_id)
        arguments = dict(arguments)
        _require(arguments, "withTransaction", "callback")
        callback_operations = arguments.pop("callback")
        options = parse_options(arguments)

        def callback(_session):
            for index, operation in enumerate(callback_operations):
                self.run_and_raise(context, operation, index)

        outcome = result_of(lambda: session.with_transaction(callback, **options))
        return outcome if outcome.failed else OperationResult.NONE

    def _create_entities(self, arguments, context):
        _require(arguments, "createEntities", "entities")
        self.entities.init(arguments["entities"])

    def _wait(self, arguments, context):
        _require(arguments, "wait", "ms")
        ms = arguments["ms"]
        if isinstance(ms, bool) or not isinstance(ms, (int, float)) or ms < 0:
            raise ConfigurationError(f"wait requires a non-negative number of ms, got {ms!r}")
        time.sleep(ms / 1000.0)

    def _event_matcher(self, context: AssertionContext) -> EventMatcher:
        return EventMatcher(
            context,
            self.entities,
            timeout=self.config.wait_for_event_timeout,
            poll_interval=self.config.event_poll_interval,
        )

    def _wait_for_event(self, arguments, context):
        _require(arguments, "waitForEvent", "client", "event", "count")
        listener = self.entities.get_listener(arguments["client"])
        self._event_matcher(context).wait_for_events(
            arguments["client"], arguments["event"], arguments["count"], listener
        )

    def _assert_event_count(self, arguments, context):
        _require(arguments, "assertEventCount", "client", "event", "count")
        listener = self.entities.get_listener(arguments["client"])
        self._event_matcher(context).assert_event_count(
            arguments["client"], arguments["event"], arguments["count"], listener
        )

    def _wait_for_primary_change(self, arguments, context):
        _require(arguments, "waitForPrimaryChange", "client", "priorTopologyDescription")
        client = self.entities.get_client(arguments["client"])
        prior = self.entities.get_topology_description(arguments["priorTopologyDescription"])
        timeout_ms = arguments.get("timeoutMS", 10000)

        with context.frame(ContextElement.of_wait_for_primary_change()):
            old_primary = _primary_of(prior)
            deadline = time.monotonic() + timeout_ms / 1000.0
            while True:
                primary = _primary_of(client.topology_description)
                if primary is not None and primary != old_primary:
                    return
                if time.monotonic() >= deadline:
                    raise context.fail(f"Timed out after {timeout_ms}ms waiting for a new primary")
                time.sleep(self.config.primary_change_poll_interval)

    def _wait_for_thread(self, arguments, context):
        _require(arguments, "waitForThread", "thread")
        thread = self.entities.get_thread(arguments["thread"])
        with context.frame(ContextElement.of_wait_for_thread(arguments["thread"])):
            thread.join(context, timeout=self.config.thread_task_timeout)

    def _run_on_thread(self, arguments, context):
        _require(arguments, "runOnThread", "thread", "operation")
        thread = self.entities.get_thread(arguments["thread"])
        operation = arguments["operation"]
        # Each submission gets its own context; threads never share one
        thread.submit(lambda: self.assert_operation(AssertionContext(), operation))

    def _record_topology_description(self, arguments, context):
        _require(arguments, "recordTopologyDescription", "client", "id")
        self.entities.record_topology_description(arguments["client"], arguments["id"])

    def _assert_topology_type(self, arguments, context):
        _require(arguments, "assertTopologyType", "topologyDescription", "topologyType")
        description = self.entities.get_topology_description(arguments["topologyDescription"])
        expected = arguments["topologyType"]
        with context.frame(ContextElement.of_topology_type(expected)):
            actual = description.topology_type_name
            if actual != expected:
                raise context.fail(f"Expected topology type {expected}, got {actual}")

    def _fail_point(self, arguments, context):
        _require(arguments, "failPoint", "client", "failPoint")
        client = self.entities.get_client(arguments["client"])
        self.failpoints.install(arguments["failPoint"], client)

    def _targeted_fail_point(self, arguments, context):
        _require(arguments, "targetedFailPoint", "session", "failPoint")
        session = self.entities.get_session(arguments["session"])
        self.failpoints.install(arguments["failPoint"], None, session=session, context=context)

    def _session(self, arguments, name):
        _require(arguments, name, "session")
        return self.entities.get_session(arguments["session"])

    def _assert_session_dirty(self, arguments, context):
        session = self._session(arguments, "assertSessionDirty")
        if not session._server_session.dirty:
            raise context.fail(f"Expected session {arguments['session']} to be dirty")

    def _assert_session_not_dirty(self, arguments, context):
        session = self._session(arguments, "assertSessionNotDirty")
        if session._server_session.dirty:
            raise context.fail(f"Expected session {arguments['session']} not to be dirty")

    def _assert_session_pinned(self, arguments, context):
        session = self._session(arguments, "assertSessionPinned")
        if session._transaction.pinned_address is None:
            raise context.fail(f"Expected session {arguments['session']} to be pinned")

    def _assert_session_unpinned(self, arguments, context):
        session = self._session(arguments, "assertSessionUnpinned")
        if session._pinned_address is not None or session._transaction.pinned_address is not None:
            raise context.fail(f"Expected session {arguments['session']} to be unpinned")

    def _assert_transaction_state(self, arguments, context):
        session = self._session(arguments, "assertSessionTransactionState")
        _require(arguments, "assertSessionTransactionState", "state")
        state_name = arguments["state"].upper()
        expected = getattr(_TxnState, state_name, None)
        if expected is None:
            raise ConfigurationError(f"Unknown transaction state {arguments['state']!r}")
        if session._transaction.state != expected:
            raise context.fail(
                f"Expected transaction state {arguments['state']}, got {session._transaction.state}"
            )

    def _last_two_lsids(self, arguments, name, context):
        _require(arguments, name, "client")
        started = self.entities.get_listener(arguments["client"]).get_command_started_events()
        if len(started) < 2:
            raise context.fail(f"Need 2 commandStartedEvents to compare lsids, got {len(started)}")
        return started[-1]["command"].get("lsid"), started[-2]["command"].get("lsid")

    def _assert_same_lsid(self, arguments, context):
        last, previous = self._last_two_lsids(arguments, "assertSameLsidOnLastTwoCommands", context)
        if last != previous:
            raise context.fail(f"Expected the same lsid, got {describe(previous)} and {describe(last)}")

    def _assert_different_lsid(self, arguments, context):
        last, previous = self._last_two_lsids(arguments, "assertDifferentLsidOnLastTwoCommands", context)
        if last == previous:
            raise context.fail(f"Expected different lsids, both were {describe(last)}")

    def _assert_connections_checked_out(self, arguments, context):
        _require(arguments, "assertNumberConnectionsCheckedOut", "client", "connections")
        listener = self.entities.get_listener(arguments["client"])
        actual = listener.num_connections_checked_out
        if actual != arguments["connections"]:
            raise context.fail(f"Expected {arguments['connections']} connections checked out, got {actual}")

    def _utility_client(self, name):
        if self.utility_client is None:
            raise ConfigurationError(f"{name} needs a utility client")
        return self.utility_client

    def _collection_names(self, arguments, name):
        _require(arguments, name, "databaseName", "collectionName")
        database = self._utility_client(name).get_database(arguments["databaseName"])
        return database.list_collection_names()

    def _assert_collection_exists(self, arguments, context):
        names = self._collection_names(arguments, "assertCollectionExists")
        if arguments["collectionName"] not in names:
            raise context.fail(
                f"Collection {arguments['databaseName']}.{arguments['collectionName']} does not exist"
            )

    def _assert_collection_not_exists(self, arguments, context):
        names = self._collection_names(arguments, "assertCollectionNotExists")
        if arguments["collectionName"] in names:
            raise context.fail(
                f"Collection {arguments['databaseName']}.{arguments['collectionName']} exists"
            )

    def _index_names(self, arguments, name):
        _require(arguments, name, "databaseName", "collectionName", "indexName")
        collection = self._utility_client(name).get_database(arguments["databaseName"]).get_collection(
            arguments["collectionName"]
        )
        return [index["name"] for index in collection.list_indexes()]

    def _assert_index_exists(self, arguments, context):
        names = self._index_names(arguments, "assertIndexExists")
        if arguments["indexName"] not in names:
            raise context.fail(f"Index {arguments['indexName']} does not exist")

    def _assert_index_not_exists(self, arguments, context):
        names = self._index_names(arguments, "assertIndexNotExists")
        if arguments["indexName"] in names:
            raise context.fail(f"Index {arguments['indexName']} exists")

