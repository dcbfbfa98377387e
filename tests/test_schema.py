"""Tests for reply schema validation."""

import pytest

from purge_cache.errors import OutputValidationError
from purge_cache.schema import load_schema, validate_output


class TestOutputSchemas:
    def test_schemas_load(self):
        for name in ("purge-cache-request-list", "all-purge-cache-request-list", "ping"):
            assert load_schema(name)["type"] == "object"

    def test_valid_worker_reply(self):
        payload = {
            "cacheHit": False,
            "requests": [{
                "provisionerId": "p1",
                "workerType": "w1",
                "cacheName": "cache-a",
                "before": "2026-10-18T12:00:00.000Z",
            }],
        }
        assert validate_output("purge-cache-request-list", payload) is payload

    def test_missing_cache_hit_fails(self):
        with pytest.raises(OutputValidationError) as info:
            validate_output("purge-cache-request-list", {"requests": []})
        assert "cacheHit" in str(info.value)

    def test_extra_record_field_fails(self):
        payload = {
            "continuationToken": "",
            "requests": [{
                "provisionerId": "p1",
                "workerType": "w1",
                "cacheName": "cache-a",
                "before": "2026-10-18T12:00:00.000Z",
                "expires": "2026-10-19T12:00:00.000Z",
            }],
        }
        with pytest.raises(OutputValidationError):
            validate_output("all-purge-cache-request-list", payload)
