"""
Offline Fuzzing Tests

Run with: pytest tests/test_fuzzing.py -v
"""

import itertools

import pytest

from rasp_guard import FuzzTarget, Severity, ThreatType
from rasp_guard.config import FuzzingConfig
from rasp_guard.fuzzing.engine import FUZZ_HEADERS, FuzzingEngine
from rasp_guard.fuzzing.payload_catalog import PayloadCatalog


def frozen_clock():
    return 0.0


def engine(**config):
    return FuzzingEngine(FuzzingConfig.model_validate(config), clock=frozen_clock)


def informational(result):
    return [v for v in result.vulnerabilities if v.metadata.get("informational")]


def scored(result):
    return [v for v in result.vulnerabilities if not v.metadata.get("informational")]


# =============================================================================
# PAYLOAD CATALOG
# =============================================================================

class TestPayloadCatalog:
    """Payload sets and type-aware mutation."""

    def test_sets(self):
        catalog = PayloadCatalog()
        assert len(catalog.get_by_type("sql")) == 10
        assert catalog.get_by_type("cobol") == ()
        assert set(catalog.get_all()) >= {"sql", "nosql", "xss", "command", "path_traversal", "auth_bypass"}

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            PayloadCatalog().get_all()["sql"] = ()

    def test_mutations_by_type(self):
        catalog = PayloadCatalog(["custom-probe"])
        strings = catalog.mutate_value("abc")
        assert strings[-1] == "custom-probe"
        assert len(strings) == 39
        assert catalog.mutate_value(True) == []
        assert catalog.mutate_value(5) == [-1, 0, 2147483647, -2147483648, 9999999999, -9999999999]
        assert {"$gt": ""} in catalog.mutate_value({"a": 1})


# =============================================================================
# FUZZING RUNS
# =============================================================================

class TestFuzzingEngine:
    """Static scoring of mutations for a target."""

    def test_string_parameter(self):
        result = engine().fuzz(FuzzTarget(url="/api/search", query={"q": "shoes"}))
        assert result.endpoint == "/api/search"
        assert result.method == "GET"
        assert result.tested_payloads == 38 + len(FUZZ_HEADERS) * 10 + 13 + 1
        assert not result.timed_out
        sqli = [v for v in scored(result) if v.type == ThreatType.SQL_INJECTION and v.metadata["field"] == "q"]
        assert sqli
        assert sqli[0].severity == Severity.CRITICAL
        assert sqli[0].metadata["vulnerability_score"] > 70

    def test_every_header_fuzzed(self):
        result = engine().fuzz(FuzzTarget(url="/"))
        headers = {v.metadata["field"] for v in scored(result) if v.metadata["location"] == "header"}
        assert headers == set(FUZZ_HEADERS)

    def test_nosql_body(self):
        result = engine().fuzz(FuzzTarget(url="/login", method="post", body={"filter": {"name": "x"}}))
        assert result.method == "POST"
        nosql = [v for v in scored(result) if v.type == ThreatType.NOSQL_INJECTION]
        assert nosql and nosql[0].metadata["location"] == "body"

    def test_integer_parameter(self):
        result = engine(authBypassTests=False, rateLimitTests=False).fuzz(
            FuzzTarget(url="/items", query={"page": 2})
        )
        assert not [v for v in scored(result) if v.metadata["field"] == "page"]

    def test_max_payloads(self):
        result = engine(maxPayloads=5).fuzz(FuzzTarget(url="/api", query={"q": "x"}))
        assert result.tested_payloads == 5 + len(FUZZ_HEADERS) * 5 + 5 + 1

    def test_custom_payloads_counted(self):
        result = engine(customPayloads=["{{7*7}}"]).fuzz(FuzzTarget(url="/api", query={"q": "x"}))
        assert result.tested_payloads == 39 + len(FUZZ_HEADERS) * 10 + 13 + 1

    def test_informational_subtests(self):
        result = engine().fuzz(FuzzTarget(url="/graphql"))
        kinds = [v.type for v in informational(result)]
        assert kinds.count(ThreatType.AUTH_BYPASS_ATTEMPT) == 13
        assert kinds.count(ThreatType.RATE_LIMIT_EXCEEDED) == 1
        assert kinds.count(ThreatType.GRAPHQL_ABUSE) == 5

    def test_graphql_only_for_graphql_targets(self):
        result = engine().fuzz(FuzzTarget(url="/api/items"))
        assert ThreatType.GRAPHQL_ABUSE not in {v.type for v in result.vulnerabilities}

    def test_subtests_can_be_disabled(self):
        result = engine(authBypassTests=False, rateLimitTests=False, graphqlIntrospection=False).fuzz(
            FuzzTarget(url="/graphql")
        )
        assert informational(result) == []

    def test_disabled(self):
        result = engine(enabled=False).fuzz(FuzzTarget(url="/api", query={"q": "x"}))
        assert result.tested_payloads == 0
        assert result.vulnerabilities == []

    def test_timeout(self):
        ticks = itertools.count(0.0, 0.01)
        fuzzer = FuzzingEngine(FuzzingConfig(timeout=1), clock=lambda: next(ticks))
        result = fuzzer.fuzz(FuzzTarget(url="/api", query={"q": "x"}))
        assert result.timed_out
        assert result.tested_payloads == 0

    def test_guard_entry_point(self, guard):
        result = guard.fuzz({"url": "/api/search", "query": {"q": "shoes"}})
        assert result.tested_payloads > 0
        assert any(v.type == ThreatType.XSS for v in result.vulnerabilities)
