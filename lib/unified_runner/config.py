"""Runner Configuration - Timeouts, connection string and schema versions"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Any

from .constants import Defaults, SUPPORTED_SCHEMA_VERSIONS


@dataclass
class RunnerConfig:
    """Settings shared by every scenario run."""
    uri: str = Defaults.MONGODB_URI
    thread_task_timeout: float = Defaults.THREAD_TASK_TIMEOUT
    wait_for_event_timeout: float = Defaults.WAIT_FOR_EVENT_TIMEOUT
    event_poll_interval: float = Defaults.EVENT_POLL_INTERVAL
    primary_change_poll_interval: float = Defaults.PRIMARY_CHANGE_POLL_INTERVAL
    schema_versions: List[str] = field(default_factory=lambda: list(SUPPORTED_SCHEMA_VERSIONS))
    client_defaults: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'RunnerConfig':
        """Build config from environment variables, falling back to defaults."""
        config = cls(
            uri=os.environ.get('MONGODB_URI', Defaults.MONGODB_URI),
            thread_task_timeout=float(
                os.environ.get('UNIFIED_THREAD_TIMEOUT', Defaults.THREAD_TASK_TIMEOUT)
            ),
            wait_for_event_timeout=float(
                os.environ.get('UNIFIED_EVENT_TIMEOUT', Defaults.WAIT_FOR_EVENT_TIMEOUT)
            ),
            event_poll_interval=float(
                os.environ.get('UNIFIED_POLL_INTERVAL', Defaults.EVENT_POLL_INTERVAL)
            ),
        )

        versions = os.environ.get('UNIFIED_SCHEMA_VERSIONS')
        if versions:
            config.schema_versions = [v.strip() for v in versions.split(',') if v.strip()]

        return config

    @classmethod
    def load(cls, path: str) -> 'RunnerConfig':
        """Load runner config from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def supports_schema_version(self, version: str) -> bool:
        """Accept exact versions and patch versions of a supported minor."""
        if version in self.schema_versions:
            return True
        parts = version.split('.')
        return len(parts) == 3 and '.'.join(parts[:2]) in self.schema_versions
