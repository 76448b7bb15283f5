"""Option parsing - scenario camelCase arguments to driver keyword arguments"""

import re
from collections import abc
from typing import Any, Dict

from pymongo.client_session import TransactionOptions
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import read_pref_mode_from_name, make_read_preference
from pymongo.server_api import ServerApi
from pymongo.write_concern import WriteConcern

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')

# Argument names whose driver spelling is not the plain snake_case form
RENAMED_ARGUMENTS = {
    "maxTimeMS": "max_time_ms",
    "maxCommitTimeMS": "max_commit_time_ms",
    "maxAwaitTimeMS": "max_await_time_ms",
    "wTimeoutMS": "wtimeout",
    "timeoutMS": "timeout",
    "batchSize": "batch_size",
    "returnDocument": "return_document",
    "arrayFilters": "array_filters",
    "bypassDocumentValidation": "bypass_document_validation",
    "allowDiskUse": "allow_disk_use",
    "newName": "new_name",
    "dropTarget": "drop_target",
    "fullDocument": "full_document",
    "fullDocumentBeforeChange": "full_document_before_change",
    "resumeAfter": "resume_after",
    "startAfter": "start_after",
    "startAtOperationTime": "start_at_operation_time",
    "showExpandedEvents": "show_expanded_events",
}


def camel_to_snake(name: str) -> str:
    if name in RENAMED_ARGUMENTS:
        return RENAMED_ARGUMENTS[name]
    return _CAMEL_BOUNDARY.sub('_', name).lower()


def read_concern(spec: Dict[str, Any]) -> ReadConcern:
    return ReadConcern(spec.get("level"))


def write_concern(spec: Dict[str, Any]) -> WriteConcern:
    kwargs = dict(spec)
    if "wtimeoutMS" in kwargs:
        kwargs["wtimeout"] = kwargs.pop("wtimeoutMS")
    if "journal" in kwargs:
        kwargs["j"] = kwargs.pop("journal")
    return WriteConcern(**kwargs)


def read_preference(spec: Dict[str, Any]):
    mode = read_pref_mode_from_name(spec["mode"])
    return make_read_preference(
        mode,
        tag_sets=spec.get("tagSets"),
        max_staleness=spec.get("maxStalenessSeconds", -1),
    )


def transaction_options(spec: Dict[str, Any]) -> TransactionOptions:
    kwargs = parse_options(spec)
    return TransactionOptions(**kwargs)


def server_api(spec: Dict[str, Any]) -> ServerApi:
    return ServerApi(
        spec["version"],
        strict=spec.get("strict"),
        deprecation_errors=spec.get("deprecationErrors"),
    )


CONVERTERS = {
    "readConcern": read_concern,
    "writeConcern": write_concern,
    "readPreference": read_preference,
    "defaultTransactionOptions": transaction_options,
}


def parse_options(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a scenario options document to driver keyword arguments.

    Concern and preference documents become driver objects; every key is
    converted to snake_case.
    """
    options = {}
    for key, value in spec.items():
        if key in CONVERTERS and isinstance(value, abc.Mapping):
            value = CONVERTERS[key](value)
        elif key == "timeoutMS" and value is not None:
            value = value / 1000.0
        options[camel_to_snake(key)] = value
    return options
