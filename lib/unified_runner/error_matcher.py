"""Error Matcher - compare a captured exception against an expectError document"""

from collections import abc
from typing import Any, Dict, List, Optional

from pymongo import errors as pymongo_errors

from .context import AssertionContext, describe
from .errors import ConfigurationError
from .matcher import ValueMatcher

KNOWN_FIELDS = frozenset([
    "isError", "isClientError", "isTimeoutError", "errorContains", "errorCode",
    "errorCodeName", "errorLabelsContain", "errorLabelsOmit", "errorResponse",
    "expectResult",
])

# Client-side failures the driver reports as PyMongoError subclasses
CLIENT_SIDE_ERRORS = (
    pymongo_errors.InvalidOperation,
    pymongo_errors.ConfigurationError,
    pymongo_errors.EncryptionError,
)


def error_details(exception: BaseException) -> Optional[Dict[str, Any]]:
    """Server reply attached to the exception, if any."""
    details = getattr(exception, "details", None)
    return details if isinstance(details, abc.Mapping) else None


def error_labels(exception: BaseException) -> List[str]:
    details = error_details(exception) or {}
    labels = list(details.get("errorLabels", []))
    for label in getattr(exception, "_error_labels", ()) or ():
        if label not in labels:
            labels.append(label)
    return labels


def partial_result(exception: BaseException) -> Optional[Dict[str, Any]]:
    """Rebuild the bulk-write result carried by a partial bulk failure."""
    details = error_details(exception)
    if details is None or "nInserted" not in details:
        return None
    upserted = {str(item["index"]): item["_id"] for item in details.get("upserted", [])}
    return {
        "deletedCount": details.get("nRemoved", 0),
        "insertedCount": details.get("nInserted", 0),
        "matchedCount": details.get("nMatched", 0),
        "modifiedCount": details.get("nModified", 0),
        "upsertedCount": details.get("nUpserted", len(upserted)),
        "upsertedIds": upserted,
        "insertedIds": {},
    }


class ErrorMatcher:
    """Checks the fields of an ``expectError`` document one by one.

    Any expected field the exception cannot answer (no code, no server reply,
    no partial result) counts as a mismatch rather than being skipped.
    """

    def __init__(self, context: AssertionContext, entities=None):
        self.context = context
        self.values = ValueMatcher(entities, context)

    def assert_errors_match(self, expected: Dict[str, Any], exception: BaseException) -> None:
        unknown = set(expected) - KNOWN_FIELDS
        if unknown:
            raise ConfigurationError(f"Unsupported expectError fields: {sorted(unknown)}")
        if exception is None:
            raise self.context.fail("Expected an error but the operation succeeded")

        details = error_details(exception)

        if expected.get("isClientError"):
            if isinstance(exception, pymongo_errors.ConnectionFailure):
                if isinstance(exception, pymongo_errors.NotPrimaryError):
                    raise self.context.fail(f"Expected a client error, got server error {exception!r}")
            elif isinstance(exception, pymongo_errors.PyMongoError) and not isinstance(exception, CLIENT_SIDE_ERRORS):
                raise self.context.fail(f"Expected a client error, got {exception!r}")

        if expected.get("isTimeoutError"):
            if not getattr(exception, "timeout", False):
                raise self.context.fail(f"Expected a timeout error, got {exception!r}")

        if "errorContains" in expected:
            needle = expected["errorContains"]
            haystack = str(exception)
            if details is not None:
                haystack = f"{haystack} {details}"
            if needle not in haystack:
                raise self.context.fail(f"Error message {haystack!r} does not contain {needle!r}")

        if "errorCode" in expected:
            code = getattr(exception, "code", None)
            if code is None and details is not None:
                code = details.get("code")
            if code is None:
                raise self.context.fail(f"Expected error code {expected['errorCode']}, exception has none")
            if code != expected["errorCode"]:
                raise self.context.fail(f"Expected error code {expected['errorCode']}, got {code}")

        if "errorCodeName" in expected:
            code_name = details.get("codeName") if details is not None else None
            if code_name != expected["errorCodeName"]:
                raise self.context.fail(
                    f"Expected error code name {expected['errorCodeName']!r}, got {code_name!r}"
                )

        labels = error_labels(exception)
        for label in expected.get("errorLabelsContain", []):
            if label not in labels:
                raise self.context.fail(f"Expected error label {label!r}, labels are {labels}")
        for label in expected.get("errorLabelsOmit", []):
            if label in labels:
                raise self.context.fail(f"Error unexpectedly has label {label!r}")

        if "errorResponse" in expected:
            if details is None:
                raise self.context.fail(f"Exception {exception!r} carries no server response")
            self.values.assert_values_match(expected["errorResponse"], details)

        if "expectResult" in expected:
            result = partial_result(exception)
            if result is None:
                raise self.context.fail(
                    f"Expected a partial result {describe(expected['expectResult'])}, "
                    f"but {type(exception).__name__} carries none"
                )
            self.values.assert_values_match(expected["expectResult"], result)
