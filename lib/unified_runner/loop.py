"""Loop Runner - repeat an operation list with failure/error absorption"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from .context import AssertionContext
from .errors import AssertionMismatch, ConfigurationError
from .results import OperationResult
from .security import SecureLogger

logger = SecureLogger(logging.getLogger(__name__))


def failure_document(error: BaseException) -> Dict[str, Any]:
    message = error.reason if isinstance(error, AssertionMismatch) else str(error)
    return {"error": message, "time": time.time(), "type": type(error).__name__}


class LoopRunner:
    """Runs a ``loop`` operation.

    Without ``numIterations`` and without a termination predicate the loop
    makes exactly one pass. ``should_terminate`` is asked after every pass;
    long-running workloads supply one that returns True once signalled.
    """

    def __init__(self, dispatcher, entities, should_terminate: Optional[Callable[[], bool]] = None):
        self.dispatcher = dispatcher
        self.entities = entities
        self.should_terminate = should_terminate

    def _done(self, passes: int, limit: Optional[int]) -> bool:
        if limit is not None and passes >= limit:
            return True
        if self.should_terminate is not None:
            return self.should_terminate()
        return limit is None

    def loop(self, arguments: Dict[str, Any], context: AssertionContext) -> OperationResult:
        if "operations" not in arguments:
            raise ConfigurationError("loop requires argument(s) ['operations']")
        operations = arguments["operations"]
        failures_id = arguments.get("storeFailuresAsEntity")
        errors_id = arguments.get("storeErrorsAsEntity")
        successes_id = arguments.get("storeSuccessesAsEntity")
        iterations_id = arguments.get("storeIterationsAsEntity")
        limit = arguments.get("numIterations")

        if failures_id and errors_id:
            logger.warning(
                "loop stores failures in %s and errors in %s; assertion failures go to the first, "
                "other exceptions to the second", failures_id, errors_id
            )

        # Destinations exist even when nothing is ever recorded in them
        for entity_id in (failures_id, errors_id):
            if entity_id:
                self.entities.add_failure_documents(entity_id, [])
        for entity_id in (successes_id, iterations_id):
            if entity_id:
                self.entities.add_success_count(entity_id, 0)

        passes = 0
        while limit is None or passes < limit:
            passes += 1
            if iterations_id:
                self.entities.add_iteration_count(iterations_id, 1)

            for index, operation in enumerate(operations):
                try:
                    self.dispatcher.assert_operation(context, operation, index)
                except ConfigurationError:
                    raise
                except AssertionError as e:
                    destination = failures_id or errors_id
                    if not destination:
                        raise
                    self.entities.add_failure_documents(destination, [failure_document(e)])
                    break
                except Exception as e:
                    destination = errors_id or failures_id
                    if not destination:
                        raise
                    self.entities.add_error_documents(destination, [failure_document(e)])
                    break
                if successes_id:
                    self.entities.add_success_count(successes_id, 1)

            if self._done(passes, limit):
                break

        return OperationResult.NONE
