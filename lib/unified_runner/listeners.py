"""Event capture - command, connection pool, SDAM and log record collectors.

Events are normalised into single-key documents such as
``{"commandStartedEvent": {"commandName": "find", ...}}`` so the event
matcher can compare them with the value matcher.
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from bson import json_util
from pymongo import monitoring

from .constants import EventType

SENSITIVE_COMMANDS = frozenset([
    "authenticate", "saslstart", "saslcontinue", "getnonce", "createuser",
    "updateuser", "copydbgetnonce", "copydbsaslstart", "copydb",
])

LOG_LEVELS = {
    "off": 100,
    "emergency": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "notice": logging.INFO,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


def _has(value: Any) -> bool:
    return value is not None


def _server_type_name(description) -> str:
    name = getattr(description, "server_type_name", None)
    return name if name is not None else "Unknown"


class EventListener(
    monitoring.CommandListener,
    monitoring.ConnectionPoolListener,
    monitoring.ServerListener,
    monitoring.ServerHeartbeatListener,
    monitoring.TopologyListener,
):
    """Collects every observed event for one client entity."""

    def __init__(
        self,
        observe_events: Optional[List[str]] = None,
        ignore_commands: Optional[List[str]] = None,
        observe_sensitive_commands: bool = False,
        store_events: Optional[Dict[str, List[str]]] = None,
        on_stored_event: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    ):
        self.observe_events = set(observe_events or [])
        self.ignore_commands = {name.lower() for name in (ignore_commands or [])}
        self.observe_sensitive_commands = observe_sensitive_commands
        self.store_events = store_events or {}
        self.on_stored_event = on_stored_event
        self._events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._checked_out = 0

    def _record(self, name: str, body: Dict[str, Any]) -> None:
        for entity_id, names in self.store_events.items():
            if name in names and self.on_stored_event is not None:
                stored = dict(body)
                stored["name"] = name
                stored["observedAt"] = time.time()
                self.on_stored_event(entity_id, stored)

        if name not in self.observe_events:
            return
        with self._lock:
            self._events.append({name: body})

    def get_events(self, family: str = "all") -> List[Dict[str, Any]]:
        """Snapshot of recorded events, optionally restricted to one family."""
        with self._lock:
            events = list(self._events)
        if family == "all":
            return events
        return [e for e in events if EventType.family_of(next(iter(e))) == family]

    def get_command_started_events(self) -> List[Dict[str, Any]]:
        return [e["commandStartedEvent"] for e in self.get_events() if "commandStartedEvent" in e]

    @property
    def num_connections_checked_out(self) -> int:
        with self._lock:
            return self._checked_out

    def clear(self) -> None:
        with self._lock:
            self._events = []

    def _skip_command(self, command_name: str, command: Optional[Dict[str, Any]] = None) -> bool:
        lowered = command_name.lower()
        if lowered in self.ignore_commands:
            return True
        if self.observe_sensitive_commands:
            return False
        if lowered in SENSITIVE_COMMANDS:
            return True
        if lowered in ("hello", "ismaster") and command is not None:
            return "speculativeAuthenticate" in command
        return False

    def _command_body(self, event) -> Dict[str, Any]:
        return {
            "commandName": event.command_name,
            "databaseName": getattr(event, "database_name", None),
            "hasServiceId": _has(getattr(event, "service_id", None)),
            "hasServerConnectionId": _has(getattr(event, "server_connection_id", None)),
        }

    def started(self, event) -> None:
        if isinstance(event, monitoring.ServerHeartbeatStartedEvent):
            self._record("serverHeartbeatStartedEvent", {"awaited": event.awaited})
            return
        if self._skip_command(event.command_name, event.command):
            return
        body = self._command_body(event)
        body["command"] = event.command
        self._record("commandStartedEvent", body)

    def succeeded(self, event) -> None:
        if isinstance(event, monitoring.ServerHeartbeatSucceededEvent):
            self._record("serverHeartbeatSucceededEvent", {"awaited": event.awaited})
            return
        if self._skip_command(event.command_name):
            return
        body = self._command_body(event)
        body["reply"] = event.reply
        self._record("commandSucceededEvent", body)

    def failed(self, event) -> None:
        if isinstance(event, monitoring.ServerHeartbeatFailedEvent):
            self._record("serverHeartbeatFailedEvent", {"awaited": event.awaited})
            return
        if self._skip_command(event.command_name):
            return
        self._record("commandFailedEvent", self._command_body(event))

    def pool_created(self, event) -> None:
        self._record("poolCreatedEvent", {})

    def pool_ready(self, event) -> None:
        self._record("poolReadyEvent", {})

    def pool_cleared(self, event) -> None:
        self._record("poolClearedEvent", {
            "hasServiceId": _has(getattr(event, "service_id", None)),
            "interruptInUseConnections": bool(getattr(event, "interrupt_connections", False)),
        })

    def pool_closed(self, event) -> None:
        self._record("poolClosedEvent", {})

    def connection_created(self, event) -> None:
        self._record("connectionCreatedEvent", {})

    def connection_ready(self, event) -> None:
        self._record("connectionReadyEvent", {})

    def connection_closed(self, event) -> None:
        self._record("connectionClosedEvent", {"reason": getattr(event, "reason", None)})

    def connection_check_out_started(self, event) -> None:
        self._record("connectionCheckOutStartedEvent", {})

    def connection_check_out_failed(self, event) -> None:
        self._record("connectionCheckOutFailedEvent", {"reason": getattr(event, "reason", None)})

    def connection_checked_out(self, event) -> None:
        with self._lock:
            self._checked_out += 1
        self._record("connectionCheckedOutEvent", {})

    def connection_checked_in(self, event) -> None:
        with self._lock:
            self._checked_out -= 1
        self._record("connectionCheckedInEvent", {})

    def opened(self, event) -> None:
        if isinstance(event, monitoring.TopologyOpenedEvent):
            self._record("topologyOpeningEvent", {})

    def description_changed(self, event) -> None:
        previous = event.previous_description
        new = event.new_description
        if isinstance(event, monitoring.ServerDescriptionChangedEvent):
            self._record("serverDescriptionChangedEvent", {
                "previousDescription": {"type": _server_type_name(previous)},
                "newDescription": {"type": _server_type_name(new)},
            })
        else:
            self._record("topologyDescriptionChangedEvent", {
                "previousDescription": {"type": getattr(previous, "topology_type_name", "Unknown")},
                "newDescription": {"type": getattr(new, "topology_type_name", "Unknown")},
            })

    def closed(self, event) -> None:
        if isinstance(event, monitoring.TopologyClosedEvent):
            self._record("topologyClosedEvent", {})


class LogInterceptor(logging.Handler):
    """Captures the driver's structured log records for one client.

    ``components`` maps a component name ("command", "connection",
    "serverSelection", "topology") to the lowest level to capture.
    """

    LOGGER_PREFIX = "pymongo."
    # Level of the driver logger before the first interceptor was installed
    _saved_level = logging.NOTSET

    def __init__(self, components: Dict[str, str], topology_id: Any = None):
        super().__init__(level=logging.DEBUG)
        self.components = {name: LOG_LEVELS.get(level, logging.DEBUG) for name, level in components.items()}
        self.topology_id = topology_id
        self._messages: List[Dict[str, Any]] = []
        self._lock_messages = threading.Lock()

    @classmethod
    def _driver_logger(cls) -> logging.Logger:
        return logging.getLogger(cls.LOGGER_PREFIX.rstrip("."))

    @staticmethod
    def _any_installed(logger: logging.Logger) -> bool:
        return any(isinstance(handler, LogInterceptor) for handler in logger.handlers)

    def install(self) -> None:
        logger = self._driver_logger()
        if not self._any_installed(logger):
            LogInterceptor._saved_level = logger.level
        logger.addHandler(self)
        if logger.getEffectiveLevel() > logging.DEBUG:
            logger.setLevel(logging.DEBUG)

    def uninstall(self) -> None:
        """Detach; the last interceptor out restores the driver logger's level."""
        logger = self._driver_logger()
        if self not in logger.handlers:
            return
        logger.removeHandler(self)
        if not self._any_installed(logger):
            logger.setLevel(LogInterceptor._saved_level)

    def emit(self, record: logging.LogRecord) -> None:
        if not record.name.startswith(self.LOGGER_PREFIX):
            return
        component = record.name[len(self.LOGGER_PREFIX):]
        threshold = self.components.get(component)
        if threshold is None or record.levelno < threshold:
            return

        try:
            data = json_util.loads(record.getMessage())
        except (ValueError, json.JSONDecodeError):
            data = {"message": record.getMessage()}
        if not isinstance(data, dict):
            data = {"message": data}

        owner = data.get("clientId", data.get("topologyId"))
        if self.topology_id is not None and owner is not None and owner != self.topology_id:
            return

        with self._lock_messages:
            self._messages.append({
                "level": record.levelname.lower(),
                "component": component,
                "data": data,
            })

    def get_messages(self) -> List[Dict[str, Any]]:
        with self._lock_messages:
            return list(self._messages)
