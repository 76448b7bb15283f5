"""Error kinds raised by the unified test runner."""

from typing import Any, List, Optional, Sequence


class UnifiedRunnerError(Exception):
    """Base exception for runner failures that are not assertion mismatches."""
    pass


class ConfigurationError(UnifiedRunnerError):
    """The scenario itself is malformed: unknown operation, bad arguments, bad ids.

    Always fatal. Never absorbed by the loop runner.
    """
    pass


class EntityNotFoundError(ConfigurationError):
    """Entity id is absent from the registry or refers to another variant."""

    def __init__(self, entity_id: str, expected_kind: Optional[str] = None, actual_kind: Optional[str] = None):
        self.entity_id = entity_id
        self.expected_kind = expected_kind
        self.actual_kind = actual_kind
        if actual_kind is None:
            message = f"Entity '{entity_id}' not found"
        else:
            message = f"Entity '{entity_id}' is a {actual_kind}, expected {expected_kind}"
        super().__init__(message)


class AssertionMismatch(AssertionError):
    """Expected value, error, event or log did not match the actual one.

    The trail is rendered from the context frames on first access, so a
    mismatch that is caught and discarded costs no serialization.
    """

    def __init__(self, message: str, trail: Optional[List[str]] = None, frames: Optional[Sequence[Any]] = None):
        super().__init__(message)
        self.reason = message
        self._trail = list(trail) if trail is not None else None
        self._frames = list(frames or [])

    @property
    def trail(self) -> List[str]:
        if self._trail is None:
            self._trail = [frame.render() for frame in reversed(self._frames)]
        return self._trail

    def __str__(self) -> str:
        if not self.trail:
            return self.reason
        return self.reason + "\n\n" + "\n".join(self.trail)


class TeardownError(UnifiedRunnerError):
    """A release step failed during cleanup. Logged, never raised past teardown."""
    pass
