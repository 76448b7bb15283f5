"""Event and log matchers - compare captured events/log records against expectations.

Both matchers share one sequencing rule: with extras forbidden the actual
sequence must have the same length and match index by index; with extras
ignored the expected items must appear in the actual sequence as an
order-preserving subsequence.
"""
import time
from collections import abc
from typing import Any, Callable, Dict, List, Optional

from .constants import Defaults
from .context import AssertionContext, ContextElement, describe
from .errors import ConfigurationError
from .matcher import ValueMatcher

REDACTABLE_FAILURE_KEYS = frozenset(["code", "codeName", "errorLabels"])


def _event_name(event: Dict[str, Any]) -> str:
    if not isinstance(event, abc.Mapping) or len(event) != 1:
        raise ConfigurationError(f"Event must be a single-key document, got {event!r}")
    return next(iter(event))


def _match_sequence(
    context: AssertionContext,
    label: str,
    expected: List[Any],
    actual: List[Any],
    ignore_extra: bool,
    item_matches: Callable[[Any, Any], bool],
    assert_item: Callable[[Any, Any], None],
) -> None:
    if not ignore_extra:
        if len(expected) != len(actual):
            raise context.fail(
                f"Number of {label} must be the same: expected {len(expected)}, actual {len(actual)}"
            )
        for index, (expected_item, actual_item) in enumerate(zip(expected, actual)):
            with context.frame(ContextElement.of_event(expected_item, actual_item, index)):
                assert_item(expected_item, actual_item)
        return

    position = 0
    for index, expected_item in enumerate(expected):
        while position < len(actual) and not item_matches(expected_item, actual[position]):
            position += 1
        if position == len(actual):
            raise context.fail(
                f"Expected {label[:-1]} #{index} {describe(expected_item)} not found in order"
            )
        position += 1


class EventMatcher:
    """Asserts on events captured by a client's listener."""

    def __init__(
        self,
        context: AssertionContext,
        entities=None,
        timeout: float = Defaults.WAIT_FOR_EVENT_TIMEOUT,
        poll_interval: float = Defaults.EVENT_POLL_INTERVAL,
    ):
        self.context = context
        self.entities = entities
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.values = ValueMatcher(entities, context)

    def event_matches(self, expected: Dict[str, Any], actual: Dict[str, Any]) -> bool:
        if _event_name(expected) != _event_name(actual):
            return False
        return self.values.matches(expected, actual)

    def assert_event_matches(self, expected: Dict[str, Any], actual: Dict[str, Any]) -> None:
        expected_name = _event_name(expected)
        actual_name = _event_name(actual)
        if expected_name != actual_name:
            raise self.context.fail(f"Expected {expected_name}, got {actual_name}")
        self.values.assert_values_match(expected[expected_name], actual[actual_name])

    def assert_events_equality(
        self,
        client_id: str,
        ignore_extra_events: bool,
        expected: List[Dict[str, Any]],
        actual: List[Dict[str, Any]],
    ) -> None:
        with self.context.frame(ContextElement.of_events(client_id, expected, actual)):
            _match_sequence(
                self.context, "events", expected, actual, ignore_extra_events,
                self.event_matches, self.assert_event_matches,
            )

    def count_matching(self, event: Dict[str, Any], listener) -> int:
        return sum(1 for actual in listener.get_events() if self.event_matches(event, actual))

    def wait_for_events(self, client_id: str, event: Dict[str, Any], count: int, listener) -> None:
        """Block until ``count`` matching events were observed or the timeout elapses."""
        with self.context.frame(ContextElement.of_wait_for_event(client_id, event, count)):
            deadline = time.monotonic() + self.timeout
            while True:
                seen = self.count_matching(event, listener)
                if seen >= count:
                    return
                if time.monotonic() >= deadline:
                    raise self.context.fail(
                        f"Timed out after {self.timeout}s waiting for {count} "
                        f"{_event_name(event)} events, saw {seen}"
                    )
                time.sleep(self.poll_interval)

    def assert_event_count(self, client_id: str, event: Dict[str, Any], count: int, listener) -> None:
        with self.context.frame(ContextElement.of_wait_for_event(client_id, event, count)):
            seen = self.count_matching(event, listener)
            if seen != count:
                raise self.context.fail(
                    f"Expected {count} {_event_name(event)} events, observed {seen}"
                )


class LogMatcher:
    """Asserts on structured log records captured for a client."""

    def __init__(self, context: AssertionContext, entities=None):
        self.context = context
        self.values = ValueMatcher(entities, context)

    def message_matches(self, expected: Dict[str, Any], actual: Dict[str, Any]) -> bool:
        try:
            self.assert_message_matches(expected, actual)
        except AssertionError:
            return False
        return True

    def assert_message_matches(self, expected: Dict[str, Any], actual: Dict[str, Any]) -> None:
        for key in ("level", "component"):
            if expected.get(key) != actual.get(key):
                raise self.context.fail(
                    f"Log {key} differs: expected {expected.get(key)!r}, actual {actual.get(key)!r}"
                )

        expected_data = dict(expected.get("data", {}))
        actual_data = actual.get("data", {})
        self.values.assert_values_match(expected_data, actual_data)

        if "failureIsRedacted" in expected:
            self._assert_redaction(bool(expected["failureIsRedacted"]), actual_data.get("failure"))

    def _assert_redaction(self, redacted: bool, failure: Any) -> None:
        if failure is None:
            raise self.context.fail("Log message has no failure to check for redaction")
        if isinstance(failure, abc.Mapping):
            is_redacted = set(failure) <= REDACTABLE_FAILURE_KEYS
        else:
            is_redacted = not str(failure)
        if redacted != is_redacted:
            state = "redacted" if redacted else "unredacted"
            raise self.context.fail(f"Expected {state} failure, got {describe(failure)}")

    def assert_log_message_equality(
        self,
        client_id: str,
        ignore_extra_messages: bool,
        expected: List[Dict[str, Any]],
        actual: List[Dict[str, Any]],
        ignore_messages: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        if ignore_messages:
            actual = [
                message for message in actual
                if not any(self.message_matches(ignored, message) for ignored in ignore_messages)
            ]
        with self.context.frame(ContextElement.of_log_messages(client_id, expected, actual)):
            _match_sequence(
                self.context, "messages", expected, actual, ignore_extra_messages,
                self.message_matches, self.assert_message_matches,
            )
