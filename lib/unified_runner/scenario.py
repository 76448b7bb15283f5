"""Scenario Executor - run one unified-format test end to end.

Per test: create entities, seed initial data, run the operations, then check
expected events, log messages and final collection contents. Fail points are
disabled and entities released afterwards whatever the outcome.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference
from pymongo.write_concern import WriteConcern

from .config import RunnerConfig
from .constants import EventType
from .context import AssertionContext, ContextElement
from .dispatcher import OperationDispatcher
from .entities import DriverFactories, EntityRegistry
from .errors import AssertionMismatch, ConfigurationError
from .event_matcher import EventMatcher, LogMatcher
from .failpoint import FailPointController
from .matcher import ValueMatcher
from .requirements import RunOnRequirementsMatcher, ServerInfo
from .security import SecureLogger

logger = SecureLogger(logging.getLogger(__name__))

EVENT_FAMILIES = {
    "command": EventType.COMMAND,
    "cmap": EventType.CMAP,
    "sdam": EventType.SDAM,
}


def _namespace(section: str, data: Dict[str, Any], *extra: str) -> str:
    missing = [key for key in ("databaseName", "collectionName") + extra if key not in data]
    if missing:
        raise ConfigurationError(f"{section} entry is missing {missing}")
    return f"{data['databaseName']}.{data['collectionName']}"


class TestStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TestVerdict:
    description: str
    status: TestStatus
    message: str = ""
    trail: List[str] = field(default_factory=list)
    teardown_errors: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "status": self.status.value,
            "message": self.message,
            "trail": self.trail,
            "teardown_errors": self.teardown_errors,
        }


class ScenarioExecutor:
    """Runs the tests of a scenario document against a deployment.

    ``utility_client`` is an internal client used for seeding, outcome
    checks and collection/index assertions. ``server_info`` feeds the
    run-on requirements; without it every requirement is taken as met.
    """

    def __init__(
        self,
        factories: DriverFactories,
        config: Optional[RunnerConfig] = None,
        utility_client: Any = None,
        server_info: Optional[ServerInfo] = None,
        should_terminate_loop: Optional[Callable[[], bool]] = None,
    ):
        self.factories = factories
        self.config = config or RunnerConfig()
        self.utility_client = utility_client
        self.requirements = RunOnRequirementsMatcher(server_info) if server_info else None
        self.should_terminate_loop = should_terminate_loop

    def _skip_reason(self, scenario: Dict[str, Any], test: Dict[str, Any]) -> Optional[str]:
        version = str(scenario.get("schemaVersion", ""))
        if not self.config.supports_schema_version(version):
            return f"Unsupported schema version {version!r}"
        if "skipReason" in test:
            return test["skipReason"]
        if self.requirements is not None:
            if not self.requirements.satisfied(scenario.get("runOnRequirements")):
                return "Scenario run-on requirements not met"
            if not self.requirements.satisfied(test.get("runOnRequirements")):
                return "Test run-on requirements not met"
        return None

    def run_all(self, scenario: Dict[str, Any]) -> List[TestVerdict]:
        return [self.run(scenario, test) for test in scenario.get("tests", [])]

    def run(self, scenario: Dict[str, Any], test: Dict[str, Any]) -> TestVerdict:
        """Run one test and return its verdict.

        Assertion failures become a failed verdict carrying the context trail.
        ConfigurationError propagates: a malformed scenario is not a test result.
        """
        description = test.get("description", "<no description>")
        reason = self._skip_reason(scenario, test)
        if reason is not None:
            logger.info("Skipping %s: %s", description, reason)
            return TestVerdict(description, TestStatus.SKIPPED, reason)

        entities = EntityRegistry(self.factories, self.config)
        failpoints = FailPointController(self.factories.create_client, self.config)
        dispatcher = OperationDispatcher(
            entities, failpoints, self.config, self.utility_client, self.should_terminate_loop
        )
        context = AssertionContext()
        verdict = TestVerdict(description, TestStatus.PASSED)

        try:
            with context.frame(ContextElement.of_test(test)):
                entities.init(scenario.get("createEntities", []))
                self._seed(context, scenario.get("initialData", []))

                for index, operation in enumerate(test.get("operations", [])):
                    dispatcher.assert_operation(context, operation, index)

                self._check_events(entities, context, test.get("expectEvents", []))
                self._check_log_messages(entities, context, test.get("expectLogMessages", []))
                self._check_outcome(context, test.get("outcome", []))
        except AssertionError as e:
            verdict.status = TestStatus.FAILED
            verdict.message = e.reason if isinstance(e, AssertionMismatch) else str(e)
            verdict.trail = e.trail if isinstance(e, AssertionMismatch) else context.trail()
            logger.error("Test failed: %s: %s", description, verdict.message)
        finally:
            # Fail points first: they may be sent through clients that close() releases
            failures = failpoints.disable_all()
            failures.extend(entities.close())
            verdict.teardown_errors = [str(failure) for failure in failures]

        return verdict

    def _require_utility_client(self, what: str):
        if self.utility_client is None:
            raise ConfigurationError(f"{what} needs a utility client")
        return self.utility_client

    def _seed(self, context: AssertionContext, initial_data: List[Dict[str, Any]]) -> None:
        for data in initial_data:
            client = self._require_utility_client("initialData")
            namespace = _namespace("initialData", data)
            try:
                self._seed_collection(client, data)
            except PyMongoError as e:
                raise context.fail(f"Seeding {namespace} failed: {type(e).__name__}: {e}") from e

    def _seed_collection(self, client, data: Dict[str, Any]) -> None:
        database = client.get_database(data["databaseName"])
        majority = WriteConcern(w="majority")
        collection = database.get_collection(data["collectionName"], write_concern=majority)
        collection.drop()

        documents = data.get("documents", [])
        create_options = data.get("createOptions")
        if create_options or not documents:
            database.create_collection(
                data["collectionName"], write_concern=majority, **(create_options or {})
            )
        if documents:
            collection.insert_many(documents)

    def _check_events(self, entities, context, expectations: List[Dict[str, Any]]) -> None:
        for expectation in expectations:
            client_id = expectation["client"]
            event_type = expectation.get("eventType", "command")
            if event_type not in EVENT_FAMILIES:
                raise ConfigurationError(f"Unsupported eventType {event_type!r}")
            actual = entities.get_listener(client_id).get_events(EVENT_FAMILIES[event_type])
            EventMatcher(context, entities).assert_events_equality(
                client_id,
                expectation.get("ignoreExtraEvents", False),
                expectation.get("events", []),
                actual,
            )

    def _check_log_messages(self, entities, context, expectations: List[Dict[str, Any]]) -> None:
        for expectation in expectations:
            client_id = expectation["client"]
            actual = entities.get_log_interceptor(client_id).get_messages()
            LogMatcher(context, entities).assert_log_message_equality(
                client_id,
                expectation.get("ignoreExtraMessages", False),
                expectation.get("messages", []),
                actual,
                expectation.get("ignoreMessages"),
            )

    def _check_outcome(self, context, outcome: List[Dict[str, Any]]) -> None:
        for expected in outcome:
            client = self._require_utility_client("outcome")
            namespace = _namespace("outcome", expected, "documents")
            collection = client.get_database(expected["databaseName"]).get_collection(
                expected["collectionName"],
                read_preference=ReadPreference.PRIMARY,
                read_concern=ReadConcern("local"),
            )
            try:
                actual = list(collection.find({}, sort=[("_id", 1)]))
            except PyMongoError as e:
                raise context.fail(f"Reading outcome of {namespace} failed: {type(e).__name__}: {e}") from e
            with context.frame(ContextElement.of_outcome(namespace, expected["documents"], actual)):
                ValueMatcher(None, context).assert_values_match(
                    expected["documents"], actual, allow_extra_fields=False
                )
