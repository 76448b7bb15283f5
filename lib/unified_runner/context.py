"""Assertion context - breadcrumb stack used to explain assertion failures."""
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List

from bson import json_util

from .errors import AssertionMismatch
from .security import sanitize


def _render(value: Any) -> str:
    try:
        return sanitize(json_util.dumps(value, sort_keys=False))
    except (TypeError, ValueError):
        return sanitize(repr(value))


@dataclass
class ContextElement:
    """A single frame on the assertion context stack."""
    kind: str
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        lines = [f"{self.kind}: {self.description}"]
        for key, value in self.details.items():
            lines.append(f"   {key}: {_render(value)}")
        return "\n".join(lines)

    @classmethod
    def of_test(cls, definition: Dict[str, Any]) -> 'ContextElement':
        return cls('Test', definition.get('description', '<no description>'))

    @classmethod
    def of_started_operation(cls, operation: Dict[str, Any], index: int) -> 'ContextElement':
        return cls(
            'Started operation',
            f"#{index} {operation.get('name')}",
            {'operation': operation},
        )

    @classmethod
    def of_completed_operation(cls, operation: Dict[str, Any], result, index: int) -> 'ContextElement':
        details = {'operation': operation}
        if result.exception is not None:
            details['exception'] = f"{type(result.exception).__name__}: {result.exception}"
        else:
            details['result'] = result.value
        return cls('Completed operation', f"#{index} {operation.get('name')}", details)

    @classmethod
    def of_outcome(cls, namespace: str, expected: List[Any], actual: List[Any]) -> 'ContextElement':
        return cls('Outcome', namespace, {'expected': expected, 'actual': actual})

    @classmethod
    def of_events(cls, client_id: str, expected: List[Any], actual: List[Any]) -> 'ContextElement':
        return cls('Events', f"client {client_id}", {'expected': expected, 'actual': actual})

    @classmethod
    def of_event(cls, expected: Any, actual: Any, index: int) -> 'ContextElement':
        return cls('Event', f"#{index}", {'expected': expected, 'actual': actual})

    @classmethod
    def of_log_messages(cls, client_id: str, expected: List[Any], actual: List[Any]) -> 'ContextElement':
        return cls('Log messages', f"client {client_id}", {'expected': expected, 'actual': actual})

    @classmethod
    def of_value(cls, path: str, expected: Any, actual: Any) -> 'ContextElement':
        return cls('Value', path or '<root>', {'expected': expected, 'actual': actual})

    @classmethod
    def of_wait_for_thread(cls, thread_id: str) -> 'ContextElement':
        return cls('Wait for thread', thread_id)

    @classmethod
    def of_wait_for_event(cls, client_id: str, event: Any, count: int) -> 'ContextElement':
        return cls('Wait for event', f"client {client_id}", {'event': event, 'count': count})

    @classmethod
    def of_wait_for_primary_change(cls) -> 'ContextElement':
        return cls('Wait for primary change', '')

    @classmethod
    def of_topology_type(cls, topology_type: str) -> 'ContextElement':
        return cls('Topology type', topology_type)


class AssertionContext:
    """Stack of context frames.

    Frames are pushed before and popped after each nested action. Only used to
    build messages; nothing reads it for control flow.
    """

    def __init__(self):
        self._stack: List[ContextElement] = []

    @property
    def depth(self) -> int:
        return len(self._stack)

    def push(self, element: ContextElement) -> None:
        self._stack.append(element)

    def pop(self) -> ContextElement:
        return self._stack.pop()

    @contextmanager
    def frame(self, element: ContextElement):
        """Push ``element`` for the duration of the block."""
        depth = len(self._stack)
        self._stack.append(element)
        try:
            yield element
        finally:
            del self._stack[depth:]

    def trail(self) -> List[str]:
        return [element.render() for element in reversed(self._stack)]

    def get_message(self, message: str) -> str:
        return message + "\n\n" + "\n".join(self.trail())

    def fail(self, message: str) -> AssertionMismatch:
        """Build an assertion error carrying the current frames, rendered on demand."""
        return AssertionMismatch(message, frames=self._stack)

    def copy(self) -> 'AssertionContext':
        clone = AssertionContext()
        clone._stack = list(self._stack)
        return clone


def describe(value: Any) -> str:
    """Short JSON-ish rendering used inline in mismatch messages."""
    text = _render(value)
    if len(text) > 500:
        text = text[:500] + '...'
    return text
