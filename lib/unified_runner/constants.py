"""Constants and reserved names for the unified test runner."""


class Defaults:
    """Default configuration values."""
    THREAD_TASK_TIMEOUT = 10.0
    WAIT_FOR_EVENT_TIMEOUT = 10.0
    EVENT_POLL_INTERVAL = 0.05
    PRIMARY_CHANGE_TIMEOUT_MS = 10000
    PRIMARY_CHANGE_POLL_INTERVAL = 0.01
    CLIENT_CONNECT_RETRIES = 5
    MONGODB_URI = "mongodb://localhost:27017"


SUPPORTED_SCHEMA_VERSIONS = [
    "1.0", "1.1", "1.2", "1.3", "1.4", "1.5", "1.6", "1.7",
    "1.8", "1.9", "1.10", "1.11", "1.12", "1.13", "1.14", "1.15",
]

TEST_RUNNER_OBJECT = "testRunner"


class EntityKind:
    """Entity variant tags."""
    CLIENT = "client"
    DATABASE = "database"
    COLLECTION = "collection"
    SESSION = "session"
    BUCKET = "bucket"
    CLIENT_ENCRYPTION = "clientEncryption"
    THREAD = "thread"
    CURSOR = "cursor"
    CHANGE_STREAM = "changeStream"
    COUNTER = "counter"
    DOCUMENT_LIST = "documentList"
    TOPOLOGY_DESCRIPTION = "topologyDescription"
    VALUE = "value"

    RELEASABLE = frozenset([
        CLIENT, SESSION, BUCKET, CLIENT_ENCRYPTION, THREAD, CURSOR, CHANGE_STREAM,
    ])


class EventType:
    """Event families a client can be asked to observe."""
    COMMAND = "command"
    CMAP = "cmap"
    SDAM = "sdam"

    COMMAND_EVENTS = frozenset([
        "commandStartedEvent",
        "commandSucceededEvent",
        "commandFailedEvent",
    ])

    CMAP_EVENTS = frozenset([
        "poolCreatedEvent",
        "poolReadyEvent",
        "poolClearedEvent",
        "poolClosedEvent",
        "connectionCreatedEvent",
        "connectionReadyEvent",
        "connectionClosedEvent",
        "connectionCheckOutStartedEvent",
        "connectionCheckOutFailedEvent",
        "connectionCheckedOutEvent",
        "connectionCheckedInEvent",
    ])

    SDAM_EVENTS = frozenset([
        "serverDescriptionChangedEvent",
        "topologyDescriptionChangedEvent",
        "serverHeartbeatStartedEvent",
        "serverHeartbeatSucceededEvent",
        "serverHeartbeatFailedEvent",
        "topologyOpeningEvent",
        "topologyClosedEvent",
    ])

    @classmethod
    def family_of(cls, event_name: str) -> str:
        if event_name in cls.COMMAND_EVENTS:
            return cls.COMMAND
        if event_name in cls.CMAP_EVENTS:
            return cls.CMAP
        if event_name in cls.SDAM_EVENTS:
            return cls.SDAM
        raise KeyError(event_name)


class Operators:
    """Special matching directives recognised by the value matcher."""
    PREFIX = "$$"
    EXISTS = "$$exists"
    TYPE = "$$type"
    UNSET_OR_MATCHES = "$$unsetOrMatches"
    MATCHES_ENTITY = "$$matchesEntity"
    MATCHES_HEX_BYTES = "$$matchesHexBytes"
    SESSION_LSID = "$$sessionLsid"
    MATCH_AS_DOCUMENT = "$$matchAsDocument"
    MATCH_AS_ROOT = "$$matchAsRoot"
    UNORDERED = "$$unordered"
    LT = "$$lt"
    LTE = "$$lte"
    GT = "$$gt"
    GTE = "$$gte"

    COMPARISONS = {
        LT: lambda actual, bound: actual < bound,
        LTE: lambda actual, bound: actual <= bound,
        GT: lambda actual, bound: actual > bound,
        GTE: lambda actual, bound: actual >= bound,
    }


class TopologyTypes:
    SINGLE = "Single"
    SHARDED = "Sharded"
    LOAD_BALANCED = "LoadBalanced"
    REPLICA_SET_WITH_PRIMARY = "ReplicaSetWithPrimary"
    REPLICA_SET_NO_PRIMARY = "ReplicaSetNoPrimary"
    UNKNOWN = "Unknown"
