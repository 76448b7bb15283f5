"""Unit tests for option name and value conversion."""

import pytest

from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import SecondaryPreferred
from pymongo.write_concern import WriteConcern

from unified_runner.options import camel_to_snake, parse_options, server_api, write_concern


@pytest.mark.parametrize("name,expected", [
    ("upsert", "upsert"),
    ("arrayFilters", "array_filters"),
    ("maxTimeMS", "max_time_ms"),
    ("timeoutMS", "timeout"),
    ("chunkSizeBytes", "chunk_size_bytes"),
    ("keyAltNames", "key_alt_names"),
])
def test_camel_to_snake(name, expected):
    assert camel_to_snake(name) == expected


class TestParseOptions:
    """P1: concern documents become driver objects."""

    @pytest.mark.p1
    def test_concerns(self):
        options = parse_options({
            "readConcern": {"level": "majority"},
            "writeConcern": {"w": 1, "journal": True},
            "readPreference": {"mode": "secondaryPreferred"},
        })

        assert options["read_concern"] == ReadConcern("majority")
        assert options["write_concern"] == WriteConcern(w=1, j=True)
        assert isinstance(options["read_preference"], SecondaryPreferred)

    @pytest.mark.p1
    def test_timeout_ms_in_seconds(self):
        assert parse_options({"timeoutMS": 1500}) == {"timeout": 1.5}

    def test_transaction_options(self):
        options = parse_options({"defaultTransactionOptions": {"readConcern": {"level": "snapshot"}}})

        assert options["default_transaction_options"].read_concern == ReadConcern("snapshot")

    def test_write_concern_timeout(self):
        assert write_concern({"w": "majority", "wtimeoutMS": 100}) == WriteConcern(w="majority", wtimeout=100)

    def test_server_api(self):
        api = server_api({"version": "1", "strict": True})

        assert api.version == "1"
        assert api.strict is True
