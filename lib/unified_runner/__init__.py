"""Unified Test Format Runner

Executes declarative driver test scenarios against a MongoDB deployment.
"""

from .config import RunnerConfig
from .constants import Defaults, EntityKind, EventType, SUPPORTED_SCHEMA_VERSIONS
from .context import AssertionContext, ContextElement
from .entities import ClientSettings, DriverFactories, EntityRegistry
from .errors import (
    UnifiedRunnerError,
    ConfigurationError,
    EntityNotFoundError,
    AssertionMismatch,
    TeardownError,
)
from .matcher import ValueMatcher
from .event_matcher import EventMatcher, LogMatcher
from .error_matcher import ErrorMatcher
from .failpoint import FailPoint, FailPointController
from .dispatcher import OperationDispatcher
from .loop import LoopRunner
from .loader import load_scenario_file, load_scenario_directory
from .requirements import RunOnRequirementsMatcher, ServerInfo
from .results import OperationResult
from .scenario import ScenarioExecutor, TestStatus, TestVerdict
from .security import sanitize, sanitize_document, SecureLogger

__all__ = [
    'RunnerConfig',
    'Defaults',
    'EntityKind',
    'EventType',
    'SUPPORTED_SCHEMA_VERSIONS',
    'AssertionContext',
    'ContextElement',
    'ClientSettings',
    'DriverFactories',
    'EntityRegistry',
    'UnifiedRunnerError',
    'ConfigurationError',
    'EntityNotFoundError',
    'AssertionMismatch',
    'TeardownError',
    'ValueMatcher',
    'EventMatcher',
    'LogMatcher',
    'ErrorMatcher',
    'FailPoint',
    'FailPointController',
    'OperationDispatcher',
    'LoopRunner',
    'load_scenario_file',
    'load_scenario_directory',
    'RunOnRequirementsMatcher',
    'ServerInfo',
    'OperationResult',
    'ScenarioExecutor',
    'TestStatus',
    'TestVerdict',
    'sanitize',
    'sanitize_document',
    'SecureLogger',
]
