"""Unit tests for expectError matching."""

import pytest

from pymongo.errors import (
    BulkWriteError,
    ExecutionTimeout,
    InvalidOperation,
    OperationFailure,
)

from unified_runner.error_matcher import ErrorMatcher, error_labels, partial_result
from unified_runner.errors import AssertionMismatch, ConfigurationError


@pytest.fixture
def matcher(context):
    return ErrorMatcher(context)


@pytest.fixture
def duplicate_key():
    return OperationFailure(
        "E11000 duplicate key error",
        code=11000,
        details={
            "ok": 0,
            "code": 11000,
            "codeName": "DuplicateKey",
            "errmsg": "E11000 duplicate key error",
            "errorLabels": ["RetryableWriteError"],
        },
    )


class TestServerErrors:
    """P0 Critical: code, code name, labels and message checks."""

    @pytest.mark.p0
    def test_all_fields_match(self, matcher, duplicate_key):
        matcher.assert_errors_match({
            "isError": True,
            "errorContains": "duplicate key",
            "errorCode": 11000,
            "errorCodeName": "DuplicateKey",
            "errorLabelsContain": ["RetryableWriteError"],
            "errorLabelsOmit": ["TransientTransactionError"],
            "errorResponse": {"codeName": "DuplicateKey"},
        }, duplicate_key)

    @pytest.mark.p0
    def test_wrong_code(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorCode": 11001}, duplicate_key)

    @pytest.mark.p0
    def test_error_contains_is_case_sensitive(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorContains": "DUPLICATE KEY"}, duplicate_key)

    def test_label_omit_violated(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorLabelsOmit": ["RetryableWriteError"]}, duplicate_key)

    def test_missing_label(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorLabelsContain": ["NoWritesPerformed"]}, duplicate_key)

    def test_code_expected_but_absent(self, matcher):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorCode": 1}, ValueError("no code here"))

    def test_error_response_needs_server_reply(self, matcher):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"errorResponse": {"code": 1}}, InvalidOperation("client side"))

    def test_error_labels_helper(self, duplicate_key):
        assert error_labels(duplicate_key) == ["RetryableWriteError"]
        assert error_labels(ValueError("x")) == []


class TestErrorKinds:
    """P1: client and timeout error classification."""

    @pytest.mark.p1
    def test_client_error(self, matcher):
        matcher.assert_errors_match({"isClientError": True}, InvalidOperation("cursor closed"))
        matcher.assert_errors_match({"isClientError": True}, ValueError("bad argument"))

    @pytest.mark.p1
    def test_server_error_is_not_client_error(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"isClientError": True}, duplicate_key)

    @pytest.mark.p1
    def test_timeout_error(self, matcher, duplicate_key):
        matcher.assert_errors_match({"isTimeoutError": True}, ExecutionTimeout("operation exceeded time limit", 50))

        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"isTimeoutError": True}, duplicate_key)


class TestPartialResults:
    """P1: expectResult on a partially failed bulk write."""

    @pytest.fixture
    def bulk_error(self):
        return BulkWriteError({
            "nInserted": 1,
            "nUpserted": 0,
            "nMatched": 0,
            "nModified": 0,
            "nRemoved": 0,
            "upserted": [],
            "writeErrors": [{"index": 1, "code": 11000, "errmsg": "duplicate key"}],
            "writeConcernErrors": [],
        })

    @pytest.mark.p1
    def test_partial_result_rebuilt(self, bulk_error):
        result = partial_result(bulk_error)

        assert result["insertedCount"] == 1
        assert result["upsertedIds"] == {}

    @pytest.mark.p1
    def test_expect_result_matches_partial_result(self, matcher, bulk_error):
        matcher.assert_errors_match({"expectResult": {"insertedCount": 1, "deletedCount": 0}}, bulk_error)

    def test_expect_result_without_partial_result(self, matcher, duplicate_key):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"expectResult": {"insertedCount": 1}}, duplicate_key)


class TestMalformedExpectations:

    def test_unknown_field(self, matcher, duplicate_key):
        with pytest.raises(ConfigurationError):
            matcher.assert_errors_match({"errorKind": "x"}, duplicate_key)

    def test_no_exception(self, matcher):
        with pytest.raises(AssertionMismatch):
            matcher.assert_errors_match({"isError": True}, None)
