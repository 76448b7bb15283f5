"""pymongo-backed driver factories and server inspection.

The rest of the runner only sees the three factory callables in
``DriverFactories``; this module is where they meet the real driver.
"""

import importlib.util
import logging
import os
import random
import time
from typing import Any, Dict

from bson.codec_options import CodecOptions
from gridfs import GridFSBucket
from pymongo import MongoClient, uri_parser
from pymongo.encryption import ClientEncryption
from pymongo.encryption_options import AutoEncryptionOpts
from pymongo.errors import ConnectionFailure, OperationFailure

from .constants import Defaults
from .entities import ClientSettings, DriverFactories
from .errors import UnifiedRunnerError
from .options import camel_to_snake
from .requirements import ServerInfo, TOPOLOGY_NAMES, parse_version
from .security import SecureLogger, sanitize

logger = SecureLogger(logging.getLogger(__name__))

BUCKET_OPTIONS = ("bucket_name", "chunk_size_bytes", "write_concern", "read_preference")


class MongoStartupError(UnifiedRunnerError):
    """Failed to connect to the deployment after all retries."""
    pass


def create_mongo_client(
    uri: str,
    max_retries: int = Defaults.CLIENT_CONNECT_RETRIES,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    **options: Any
) -> MongoClient:
    """Create a MongoClient and ping it, retrying with exponential backoff.

    Args:
        uri: MongoDB connection string
        max_retries: Maximum connection attempts (default 5)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay cap in seconds

    Returns:
        Connected MongoClient

    Raises:
        MongoStartupError: If connection fails after all retries
    """
    last_error = None

    for attempt in range(max_retries):
        client = MongoClient(uri, **options)
        try:
            client.admin.command("ping")
            return client
        except (ConnectionFailure, OSError) as e:
            client.close()
            last_error = e
            delay = min(base_delay * (2 ** attempt), max_delay)
            jitter = delay * 0.25 * (2 * random.random() - 1)
            actual_delay = delay + jitter

            logger.warning(
                "MongoDB connection failed (attempt %d/%d): %s", attempt + 1, max_retries, str(e)
            )

            if attempt < max_retries - 1:
                logger.info("Retrying in %.1fs...", actual_delay)
                time.sleep(actual_delay)

    raise MongoStartupError(
        sanitize(f"Failed to connect to MongoDB at {uri} after {max_retries} attempts: {last_error}")
    )


def _auto_encryption_options(spec: Dict[str, Any]) -> AutoEncryptionOpts:
    spec = dict(spec)
    kms_providers = spec.pop("kmsProviders")
    key_vault_namespace = spec.pop("keyVaultNamespace")
    extra = spec.pop("extraOptions", {})
    kwargs = {camel_to_snake(key): value for key, value in spec.items()}
    kwargs.update({camel_to_snake(key): value for key, value in extra.items()})
    return AutoEncryptionOpts(kms_providers, key_vault_namespace, **kwargs)


def create_client(settings: ClientSettings) -> MongoClient:
    """Build a client entity from its settings."""
    options = dict(settings.uri_options)
    options["event_listeners"] = list(settings.event_listeners)
    if settings.server_api is not None:
        options["server_api"] = settings.server_api
    if settings.auto_encryption_options:
        options["auto_encryption_opts"] = _auto_encryption_options(settings.auto_encryption_options)

    if settings.hosts:
        parsed = uri_parser.parse_uri(settings.uri)
        kwargs = dict(parsed["options"])
        if parsed.get("username"):
            kwargs["username"] = parsed["username"]
            kwargs["password"] = parsed["password"]
        kwargs.pop("replicaset", None)
        kwargs.update(options)
        return MongoClient(settings.hosts, **kwargs)

    return MongoClient(settings.uri, **options)


def create_bucket(database, options: Dict[str, Any]) -> GridFSBucket:
    kwargs = {key: value for key, value in options.items() if key in BUCKET_OPTIONS}
    return GridFSBucket(database, **kwargs)


def create_client_encryption(key_vault_client, settings: Dict[str, Any]) -> ClientEncryption:
    return ClientEncryption(
        settings["kms_providers"],
        settings["key_vault_namespace"],
        key_vault_client,
        CodecOptions(),
        kms_tls_options=settings.get("kms_tls_options"),
    )


def default_factories() -> DriverFactories:
    return DriverFactories(
        create_client=create_client,
        create_bucket=create_bucket,
        create_client_encryption=create_client_encryption,
    )


def describe_server(client: MongoClient, uri: str) -> ServerInfo:
    """Collect version, topology and auth facts for run-on requirements."""
    build_info = client.admin.command("buildInfo")
    version = tuple(build_info.get("versionArray", [])[:3]) or parse_version(build_info["version"])

    topology = TOPOLOGY_NAMES.get(client.topology_description.topology_type_name, "single")
    if topology == "sharded":
        shards = client.config.shards.find_one() or {}
        if "/" in shards.get("host", ""):
            topology = "sharded-replicaset"

    try:
        parameters = client.admin.command({"getParameter": "*"})
    except OperationFailure as e:
        logger.warning("Could not read server parameters: %s", str(e))
        parameters = {}

    parsed = uri_parser.parse_uri(uri)
    return ServerInfo(
        version=version,
        topology=topology,
        serverless=os.environ.get("SERVERLESS", "").lower() in ("1", "true", "yes"),
        auth_enabled=bool(parsed.get("username")),
        auth_mechanism=parsed["options"].get("authmechanism"),
        parameters=dict(parameters),
        csfle=importlib.util.find_spec("pymongocrypt") is not None,
    )
