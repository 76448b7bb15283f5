"""Entity Registry - Own every named runtime object a scenario creates"""

import logging
import threading
from collections import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pymongo.errors import InvalidOperation

from .config import RunnerConfig
from .constants import EntityKind
from .errors import ConfigurationError, EntityNotFoundError, TeardownError
from .listeners import EventListener, LogInterceptor
from .options import parse_options, server_api
from .security import SecureLogger, sanitize_document
from .threads import BackgroundThread

logger = SecureLogger(logging.getLogger(__name__))

# Release method per releasable entity kind
RELEASE_METHODS = {
    EntityKind.CLIENT: "close",
    EntityKind.SESSION: "end_session",
    EntityKind.BUCKET: "close",
    EntityKind.CLIENT_ENCRYPTION: "close",
    EntityKind.THREAD: "shutdown",
    EntityKind.CURSOR: "close",
    EntityKind.CHANGE_STREAM: "close",
}

# Fields each entity kind must declare besides its id
REQUIRED_FIELDS = {
    EntityKind.CLIENT: (),
    EntityKind.DATABASE: ("client", "databaseName"),
    EntityKind.COLLECTION: ("database", "collectionName"),
    EntityKind.SESSION: ("client",),
    EntityKind.BUCKET: ("database",),
    EntityKind.CLIENT_ENCRYPTION: ("clientEncryptionOpts",),
    EntityKind.THREAD: (),
}


@dataclass
class Entity:
    """Registry slot: the variant tag plus the live object."""
    entity_id: str
    kind: str
    value: Any


@dataclass
class ClientSettings:
    """Everything a client factory needs to build one client entity."""
    uri: str
    uri_options: Dict[str, Any] = field(default_factory=dict)
    event_listeners: List[Any] = field(default_factory=list)
    server_api: Any = None
    use_multiple_mongoses: bool = False
    auto_encryption_options: Optional[Dict[str, Any]] = None
    hosts: Optional[List[str]] = None


@dataclass
class DriverFactories:
    """The three constructors supplied by the embedding driver."""
    create_client: Callable[[ClientSettings], Any]
    create_bucket: Callable[[Any, Dict[str, Any]], Any]
    create_client_encryption: Callable[[Any, Dict[str, Any]], Any]


def _topology_id(client: Any) -> Any:
    settings = getattr(client, "_topology_settings", None)
    return getattr(settings, "_topology_id", None)


class EntityRegistry:
    """Id-keyed store of clients, sessions, handles and inert values.

    Entities are created in declaration order. A spec can only reference ids
    declared before it. ``close()`` releases every releasable entity once, in
    reverse creation order, continuing past individual failures.
    """

    def __init__(self, factories: DriverFactories, config: Optional[RunnerConfig] = None):
        self.factories = factories
        self.config = config or RunnerConfig()
        self._entities: Dict[str, Entity] = {}
        self._order: List[str] = []
        self._listeners: Dict[str, EventListener] = {}
        self._interceptors: Dict[str, LogInterceptor] = {}
        self._session_lsids: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._closed = False

        self._creators = {
            EntityKind.CLIENT: self._create_client,
            EntityKind.DATABASE: self._create_database,
            EntityKind.COLLECTION: self._create_collection,
            EntityKind.SESSION: self._create_session,
            EntityKind.BUCKET: self._create_bucket,
            EntityKind.CLIENT_ENCRYPTION: self._create_client_encryption,
            EntityKind.THREAD: self._create_thread,
        }

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def init(self, specs: List[Dict[str, Any]]) -> None:
        """Create entities from ``createEntities`` specs, in order.

        May be called again mid-scenario; existing entities are untouched.
        """
        for spec in specs or []:
            if not isinstance(spec, abc.Mapping) or len(spec) != 1:
                raise ConfigurationError(f"Entity spec must have exactly one key: {spec!r}")
            kind, body = next(iter(spec.items()))
            creator = self._creators.get(kind)
            if creator is None:
                raise ConfigurationError(f"Unsupported entity type {kind!r}")
            if not isinstance(body, abc.Mapping) or "id" not in body:
                raise ConfigurationError(f"{kind} entity spec has no id")
            missing = [key for key in REQUIRED_FIELDS[kind] if key not in body]
            if missing:
                raise ConfigurationError(f"{kind} entity '{body['id']}' is missing {missing}")
            logger.debug("Creating %s entity %s", kind, body["id"])
            creator(body)

    def put(self, entity_id: str, kind: str, value: Any) -> None:
        with self._lock:
            if not isinstance(entity_id, str):
                raise ConfigurationError(f"Entity id must be a string, got {entity_id!r}")
            if entity_id in self._entities:
                raise ConfigurationError(f"Entity '{entity_id}' already exists")
            self._entities[entity_id] = Entity(entity_id, kind, value)
            self._order.append(entity_id)

    def get(self, entity_id: str, kind: Optional[str] = None) -> Any:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        if kind is not None and entity.kind != kind:
            raise EntityNotFoundError(entity_id, kind, entity.kind)
        return entity.value

    def kind_of(self, entity_id: str) -> str:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity.kind

    def get_value(self, entity_id: str) -> Any:
        """Current value of any entity, whatever its kind."""
        return self.get(entity_id)

    def get_client(self, entity_id: str):
        return self.get(entity_id, EntityKind.CLIENT)

    def get_database(self, entity_id: str):
        return self.get(entity_id, EntityKind.DATABASE)

    def get_collection(self, entity_id: str):
        return self.get(entity_id, EntityKind.COLLECTION)

    def get_session(self, entity_id: str):
        return self.get(entity_id, EntityKind.SESSION)

    def get_bucket(self, entity_id: str):
        return self.get(entity_id, EntityKind.BUCKET)

    def get_client_encryption(self, entity_id: str):
        return self.get(entity_id, EntityKind.CLIENT_ENCRYPTION)

    def get_thread(self, entity_id: str) -> BackgroundThread:
        return self.get(entity_id, EntityKind.THREAD)

    def get_cursor(self, entity_id: str):
        entity = self._entities.get(entity_id)
        if entity is not None and entity.kind == EntityKind.CHANGE_STREAM:
            return entity.value
        return self.get(entity_id, EntityKind.CURSOR)

    def get_topology_description(self, entity_id: str):
        return self.get(entity_id, EntityKind.TOPOLOGY_DESCRIPTION)

    def get_counter(self, entity_id: str) -> int:
        return self.get(entity_id, EntityKind.COUNTER)

    def get_document_list(self, entity_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.get(entity_id, EntityKind.DOCUMENT_LIST))

    def get_listener(self, client_id: str) -> EventListener:
        self.get_client(client_id)
        listener = self._listeners.get(client_id)
        if listener is None:
            raise ConfigurationError(f"No event listener configured for client '{client_id}'")
        return listener

    def get_log_interceptor(self, client_id: str) -> LogInterceptor:
        self.get_client(client_id)
        interceptor = self._interceptors.get(client_id)
        if interceptor is None:
            raise ConfigurationError(f"Client '{client_id}' does not observe log messages")
        return interceptor

    def get_session_lsid(self, session_id: str) -> Any:
        """The lsid of a session, still available after the session has ended."""
        session = self.get_session(session_id)
        try:
            return session.session_id
        except InvalidOperation:
            return self._session_lsids[session_id]

    def client_id_of_session(self, session_id: str) -> Optional[str]:
        session = self.get_session(session_id)
        client = getattr(session, "client", None)
        for entity_id in self._order:
            entity = self._entities[entity_id]
            if entity.kind == EntityKind.CLIENT and entity.value is client:
                return entity_id
        return None

    def record_topology_description(self, client_id: str, entity_id: str) -> None:
        client = self.get_client(client_id)
        self.put(entity_id, EntityKind.TOPOLOGY_DESCRIPTION, client.topology_description)

    def _counter_add(self, entity_id: str, amount: int) -> None:
        with self._lock:
            if entity_id not in self._entities:
                self.put(entity_id, EntityKind.COUNTER, 0)
            entity = self._entities[entity_id]
            if entity.kind != EntityKind.COUNTER:
                raise EntityNotFoundError(entity_id, EntityKind.COUNTER, entity.kind)
            entity.value += amount

    def _documents_add(self, entity_id: str, documents: List[Dict[str, Any]]) -> None:
        with self._lock:
            if entity_id not in self._entities:
                self.put(entity_id, EntityKind.DOCUMENT_LIST, [])
            entity = self._entities[entity_id]
            if entity.kind != EntityKind.DOCUMENT_LIST:
                raise EntityNotFoundError(entity_id, EntityKind.DOCUMENT_LIST, entity.kind)
            entity.value.extend(documents)

    def add_success_count(self, entity_id: str, count: int) -> None:
        self._counter_add(entity_id, count)

    def add_iteration_count(self, entity_id: str, count: int) -> None:
        self._counter_add(entity_id, count)

    def add_failure_documents(self, entity_id: str, documents: List[Dict[str, Any]]) -> None:
        self._documents_add(entity_id, documents)

    def add_error_documents(self, entity_id: str, documents: List[Dict[str, Any]]) -> None:
        self._documents_add(entity_id, documents)

    def _store_event(self, entity_id: str, document: Dict[str, Any]) -> None:
        self._documents_add(entity_id, [document])

    def _create_client(self, spec: Dict[str, Any]) -> None:
        client_id = spec["id"]
        if client_id in self._entities:
            raise ConfigurationError(f"Entity '{client_id}' already exists")

        store_events = {}
        for target in spec.get("storeEventsAsEntities", []):
            if not isinstance(target, abc.Mapping) or "id" not in target or "events" not in target:
                raise ConfigurationError(f"storeEventsAsEntities entry needs an id and events: {target!r}")
            store_events[target["id"]] = list(target["events"])
            self.put(target["id"], EntityKind.DOCUMENT_LIST, [])

        listener = EventListener(
            observe_events=spec.get("observeEvents"),
            ignore_commands=spec.get("ignoreCommandMonitoringEvents"),
            observe_sensitive_commands=spec.get("observeSensitiveCommands", False),
            store_events=store_events,
            on_stored_event=self._store_event,
        )

        uri_options = dict(self.config.client_defaults)
        uri_options.update(spec.get("uriOptions", {}))
        settings = ClientSettings(
            uri=self.config.uri,
            uri_options=uri_options,
            event_listeners=[listener],
            server_api=server_api(spec["serverApi"]) if "serverApi" in spec else None,
            use_multiple_mongoses=bool(spec.get("useMultipleMongoses", False)),
            auto_encryption_options=spec.get("autoEncryptOpts"),
        )
        logger.debug("Client %s options: %s", client_id, str(sanitize_document(uri_options)))

        interceptor = None
        if "observeLogMessages" in spec:
            interceptor = LogInterceptor(spec["observeLogMessages"])
            interceptor.install()

        try:
            client = self.factories.create_client(settings)
        except Exception:
            if interceptor is not None:
                interceptor.uninstall()
            raise
        if interceptor is not None:
            interceptor.topology_id = _topology_id(client)
            self._interceptors[client_id] = interceptor

        self._listeners[client_id] = listener
        self.put(client_id, EntityKind.CLIENT, client)

    def _create_database(self, spec: Dict[str, Any]) -> None:
        client = self.get_client(spec["client"])
        options = parse_options(spec.get("databaseOptions", {}))
        self.put(spec["id"], EntityKind.DATABASE, client.get_database(spec["databaseName"], **options))

    def _create_collection(self, spec: Dict[str, Any]) -> None:
        database = self.get_database(spec["database"])
        options = parse_options(spec.get("collectionOptions", {}))
        collection = database.get_collection(spec["collectionName"], **options)
        self.put(spec["id"], EntityKind.COLLECTION, collection)

    def _create_session(self, spec: Dict[str, Any]) -> None:
        client = self.get_client(spec["client"])
        options = parse_options(spec.get("sessionOptions", {}))
        session = client.start_session(**options)
        lsid = session.session_id
        self._session_lsids[spec["id"]] = dict(lsid) if isinstance(lsid, abc.Mapping) else lsid
        self.put(spec["id"], EntityKind.SESSION, session)

    def _create_bucket(self, spec: Dict[str, Any]) -> None:
        database = self.get_database(spec["database"])
        options = parse_options(spec.get("bucketOptions", {}))
        self.put(spec["id"], EntityKind.BUCKET, self.factories.create_bucket(database, options))

    def _create_client_encryption(self, spec: Dict[str, Any]) -> None:
        options = dict(spec.get("clientEncryptionOpts", {}))
        if "keyVaultClient" not in options:
            raise ConfigurationError(f"clientEncryption '{spec['id']}' needs a keyVaultClient")
        key_vault_client = self.get_client(options.pop("keyVaultClient"))
        handle = self.factories.create_client_encryption(key_vault_client, parse_options(options))
        self.put(spec["id"], EntityKind.CLIENT_ENCRYPTION, handle)

    def _create_thread(self, spec: Dict[str, Any]) -> None:
        if spec["id"] in self._entities:
            raise ConfigurationError(f"Entity '{spec['id']}' already exists")
        self.put(spec["id"], EntityKind.THREAD, BackgroundThread(spec["id"]))

    def close(self) -> List[TeardownError]:
        """Release every releasable entity exactly once.

        Returns the release failures; they are logged, never raised.
        """
        with self._lock:
            if self._closed:
                return []
            self._closed = True
            entities = [self._entities[entity_id] for entity_id in reversed(self._order)]

        failures = []
        for entity in entities:
            method_name = RELEASE_METHODS.get(entity.kind)
            if method_name is None:
                continue
            release = getattr(entity.value, method_name, None)
            if release is None:
                continue
            try:
                release()
            except Exception as e:
                logger.warning("Failed to release %s %s: %s", entity.kind, entity.entity_id, str(e))
                failures.append(TeardownError(f"{entity.kind} {entity.entity_id}: {e}"))

        for interceptor in self._interceptors.values():
            interceptor.uninstall()

        return failures
