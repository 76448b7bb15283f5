"""Operation Result - value, exception, or nothing"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import ConfigurationError


@dataclass(frozen=True)
class OperationResult:
    """Outcome of executing one operation.

    Exactly one of ``value`` / ``exception`` is meaningful; ``NONE`` is used by
    operations whose success is defined purely by the absence of an exception.
    """
    value: Any = None
    exception: Optional[BaseException] = None
    is_none: bool = False

    @classmethod
    def of_value(cls, value: Any) -> 'OperationResult':
        return cls(value=value)

    @classmethod
    def of_exception(cls, exception: BaseException) -> 'OperationResult':
        return cls(exception=exception)

    @property
    def failed(self) -> bool:
        return self.exception is not None

    def __repr__(self) -> str:
        if self.is_none:
            return 'OperationResult.NONE'
        if self.exception is not None:
            return f'OperationResult(exception={self.exception!r})'
        return f'OperationResult(value={self.value!r})'


OperationResult.NONE = OperationResult(is_none=True)


def result_of(action: Callable[[], Any]) -> OperationResult:
    """Run ``action`` and capture its return value or its exception.

    Configuration errors and assertion errors are not operation failures and
    propagate to the caller.
    """
    try:
        return OperationResult.of_value(action())
    except (ConfigurationError, AssertionError):
        raise
    except Exception as e:
        return OperationResult.of_exception(e)
