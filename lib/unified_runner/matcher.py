"""Value Matcher - structural comparison with $$-prefixed directives

Expected documents are compared against actual values field by field. Any
sub-document whose single key starts with ``$$`` is a directive and is
evaluated instead of being compared literally:

    {"$$exists": true}             field present, any value
    {"$$type": ["int", "long"]}    actual BSON type is one of the names
    {"$$unsetOrMatches": X}        field absent, or present and matching X
    {"$$lte": 5}                   numeric bound (also $$lt, $$gt, $$gte)
    {"$$sessionLsid": "session0"}  lsid of a session entity
    {"$$matchesEntity": "id"}      current value of any entity
    {"$$matchesHexBytes": "abcd"}  binary payload given as hex
    {"$$matchAsDocument": {...}}   actual is a JSON string, parsed then matched
    {"$$matchAsRoot": {...}}       matched with extra fields permitted
    {"$$unordered": [...]}         array matched without regard to order

Extra fields in the actual document are permitted unless the caller passes
``allow_extra_fields=False``.
"""

import datetime
import re
from collections import abc
from decimal import Decimal
from typing import Any, Optional

from bson import json_util
from bson.code import Code
from bson.dbref import DBRef
from bson.decimal128 import Decimal128
from bson.int64 import Int64
from bson.max_key import MaxKey
from bson.min_key import MinKey
from bson.objectid import ObjectId
from bson.regex import Regex
from bson.timestamp import Timestamp

from .constants import Operators
from .context import AssertionContext, describe
from .errors import ConfigurationError

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal128, Decimal)) and not isinstance(value, bool)


def _as_number(value: Any):
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, Decimal):
        return value
    return value


def _is_int(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, (bool, Int64))
        and INT32_MIN <= value <= INT32_MAX
    )


def _is_long(value: Any) -> bool:
    return isinstance(value, Int64) or (isinstance(value, int) and not isinstance(value, bool))


BSON_TYPE_CHECKS = {
    "double": lambda v: isinstance(v, float),
    "string": lambda v: isinstance(v, str),
    "object": lambda v: isinstance(v, abc.Mapping),
    "array": lambda v: isinstance(v, (list, tuple)),
    "binData": lambda v: isinstance(v, (bytes, bytearray)),
    "undefined": lambda v: v is None,
    "objectId": lambda v: isinstance(v, ObjectId),
    "bool": lambda v: isinstance(v, bool),
    "date": lambda v: isinstance(v, datetime.datetime),
    "null": lambda v: v is None,
    "regex": lambda v: isinstance(v, (Regex, re.Pattern)),
    "dbPointer": lambda v: isinstance(v, DBRef),
    "javascript": lambda v: isinstance(v, Code) and v.scope is None,
    "symbol": lambda v: isinstance(v, str),
    "javascriptWithScope": lambda v: isinstance(v, Code) and v.scope is not None,
    "int": _is_int,
    "timestamp": lambda v: isinstance(v, Timestamp),
    "long": _is_long,
    "decimal": lambda v: isinstance(v, Decimal128),
    "minKey": lambda v: isinstance(v, MinKey),
    "maxKey": lambda v: isinstance(v, MaxKey),
    "number": _is_number,
}


def is_operator(value: Any) -> bool:
    """True for a single-key document whose key is a ``$$`` directive."""
    return (
        isinstance(value, abc.Mapping)
        and len(value) == 1
        and next(iter(value)).startswith(Operators.PREFIX)
    )


class _Mismatch(Exception):
    """Difference found while matching; formatted only when it is reported."""

    def __init__(self, message: str, path: str, expected: Any, actual: Any):
        super().__init__(message)
        self.message = message
        self.path = path
        self.expected = expected
        self.actual = actual

    def detail(self) -> str:
        location = self.path or "<root>"
        return f"{self.message} at '{location}': expected {describe(self.expected)}, actual {describe(self.actual)}"


class ValueMatcher:
    """Compares expected documents against actual values."""

    def __init__(self, entities=None, context: Optional[AssertionContext] = None):
        self.entities = entities
        self.context = context or AssertionContext()

    def matches(self, expected: Any, actual: Any, allow_extra_fields: bool = True) -> bool:
        """Return True when ``actual`` satisfies ``expected``."""
        try:
            self._match(expected, actual, "", allow_extra_fields)
        except _Mismatch:
            return False
        return True

    def assert_values_match(self, expected: Any, actual: Any, allow_extra_fields: bool = True) -> None:
        """Raise AssertionMismatch describing the first difference found."""
        try:
            self._match(expected, actual, "", allow_extra_fields)
        except _Mismatch as e:
            raise self.context.fail(e.detail()) from None

    def _fail(self, message: str, path: str, expected: Any, actual: Any) -> _Mismatch:
        return _Mismatch(message, path, expected, actual)

    def _match(self, expected: Any, actual: Any, path: str, allow_extra_fields: bool) -> None:
        if is_operator(expected):
            self._match_operator(expected, actual, path, allow_extra_fields)
        elif isinstance(expected, abc.Mapping):
            self._match_document(expected, actual, path, allow_extra_fields)
        elif isinstance(expected, (list, tuple)):
            self._match_array(expected, actual, path, allow_extra_fields)
        elif not self._scalars_equal(expected, actual):
            raise self._fail("Values differ", path, expected, actual)

    def _match_document(self, expected, actual, path: str, allow_extra_fields: bool) -> None:
        if not isinstance(actual, abc.Mapping):
            raise self._fail("Expected a document", path, expected, actual)

        for key, expected_value in expected.items():
            field_path = f"{path}.{key}" if path else key
            actual_value = actual.get(key, _MISSING)

            if is_operator(expected_value):
                operator, operand = next(iter(expected_value.items()))
                if operator == Operators.EXISTS:
                    present = actual_value is not _MISSING
                    if bool(operand) != present:
                        state = "absent" if operand else "present"
                        shown = actual_value if present else None
                        raise self._fail(f"Field unexpectedly {state}", field_path, expected_value, shown)
                    continue
                if operator == Operators.UNSET_OR_MATCHES and actual_value is _MISSING:
                    continue

            if actual_value is _MISSING:
                raise self._fail("Missing field", field_path, expected_value, None)

            self._match(expected_value, actual_value, field_path, allow_extra_fields)

        if not allow_extra_fields:
            extra = [key for key in actual if key not in expected]
            if extra:
                raise self._fail(f"Unexpected fields {extra}", path, expected, actual)

    def _match_array(self, expected, actual, path: str, allow_extra_fields: bool) -> None:
        if not isinstance(actual, (list, tuple)):
            raise self._fail("Expected an array", path, expected, actual)
        if len(expected) != len(actual):
            raise self._fail(
                f"Array length {len(actual)} != expected {len(expected)}", path, expected, actual
            )
        for index, (expected_item, actual_item) in enumerate(zip(expected, actual)):
            self._match(expected_item, actual_item, f"{path}[{index}]", allow_extra_fields)

    def _match_unordered(self, expected, actual, path: str, allow_extra_fields: bool) -> None:
        if not isinstance(expected, (list, tuple)):
            raise ConfigurationError(f"{Operators.UNORDERED} requires an array, got {expected!r}")
        if not isinstance(actual, (list, tuple)) or len(actual) != len(expected):
            raise self._fail("Unordered arrays differ in shape", path, expected, actual)

        remaining = list(actual)
        for index, expected_item in enumerate(expected):
            for position, candidate in enumerate(remaining):
                if self.matches(expected_item, candidate, allow_extra_fields):
                    del remaining[position]
                    break
            else:
                raise self._fail(
                    "No actual element matches", f"{path}[{index}]", expected_item, remaining
                )

    def _match_operator(self, expected, actual, path: str, allow_extra_fields: bool) -> None:
        operator, operand = next(iter(expected.items()))

        if operator == Operators.EXISTS:
            raise ConfigurationError(f"{Operators.EXISTS} is only valid for a document field ({path or '<root>'})")

        if operator == Operators.UNSET_OR_MATCHES:
            self._match(operand, actual, path, allow_extra_fields)

        elif operator == Operators.TYPE:
            names = operand if isinstance(operand, (list, tuple)) else [operand]
            for name in names:
                if name not in BSON_TYPE_CHECKS:
                    raise ConfigurationError(f"Unknown type name in {Operators.TYPE}: {name}")
            if not any(BSON_TYPE_CHECKS[name](actual) for name in names):
                raise self._fail(f"Type is not one of {names}", path, expected, actual)

        elif operator in Operators.COMPARISONS:
            if not _is_number(operand):
                raise ConfigurationError(f"{operator} requires a numeric operand, got {operand!r}")
            if not _is_number(actual) or not Operators.COMPARISONS[operator](
                _as_number(actual), _as_number(operand)
            ):
                raise self._fail(f"Comparison {operator} failed", path, expected, actual)

        elif operator == Operators.SESSION_LSID:
            lsid = self._entities().get_session_lsid(operand)
            self._match(lsid, actual, path, False)

        elif operator == Operators.MATCHES_ENTITY:
            value = self._entities().get_value(operand)
            self._match(value, actual, path, allow_extra_fields)

        elif operator == Operators.MATCHES_HEX_BYTES:
            try:
                expected_bytes = bytes.fromhex(operand)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Invalid hex in {Operators.MATCHES_HEX_BYTES}: {operand!r}")
            if not isinstance(actual, (bytes, bytearray)) or bytes(actual) != expected_bytes:
                raise self._fail("Binary payload differs", path, expected, actual)

        elif operator == Operators.MATCH_AS_DOCUMENT:
            if not isinstance(actual, str):
                raise self._fail("Expected a JSON string", path, expected, actual)
            try:
                parsed = json_util.loads(actual)
            except ValueError:
                raise self._fail("Actual is not valid JSON", path, expected, actual)
            self._match(operand, parsed, path, True)

        elif operator == Operators.MATCH_AS_ROOT:
            self._match(operand, actual, path, True)

        elif operator == Operators.UNORDERED:
            self._match_unordered(operand, actual, path, allow_extra_fields)

        else:
            raise ConfigurationError(f"Unsupported match operator {operator}")

    def _entities(self):
        if self.entities is None:
            raise ConfigurationError("Entity directives need an entity registry")
        return self.entities

    @staticmethod
    def _scalars_equal(expected: Any, actual: Any) -> bool:
        if expected is None:
            return actual is None
        if isinstance(expected, bool) or isinstance(actual, bool):
            return isinstance(expected, bool) and isinstance(actual, bool) and expected == actual
        if _is_number(expected):
            return _is_number(actual) and _as_number(expected) == _as_number(actual)
        if isinstance(expected, (bytes, bytearray)) and isinstance(actual, (bytes, bytearray)):
            return bytes(expected) == bytes(actual)
        return expected == actual
