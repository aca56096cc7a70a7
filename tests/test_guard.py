"""
Guard Helper API Tests

Run with: pytest tests/test_guard.py -v
"""

import pytest

from conftest import BENIGN_CORPUS
from rasp_guard import Guard, Severity, ThreatType
from rasp_guard.guard import BLOCK_MESSAGE


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestConstruction:
    """Building guards."""

    def test_quick_protect(self):
        with Guard.quick_protect(["https://app.example.com"], logging={"enabled": False}) as g:
            assert g.config.block_mode is True
            assert g.config.trusted_origins == ["https://app.example.com"]
            assert [d.name for d in g.engine.detectors] == ["injection", "advanced", "xss", "csrf"]

    def test_block_message(self, quiet):
        assert Guard(quiet).block_message == BLOCK_MESSAGE
        custom = Guard({**quiet, "customBlockMessage": "Contact support."})
        assert custom.block_message == f"{BLOCK_MESSAGE}. Contact support."

    def test_helpers_work_with_protections_off(self, quiet):
        g = Guard({**quiet, "injectionProtection": False, "xssProtection": False})
        assert g.engine.detectors[0].name == "csrf"
        assert not g.is_safe("' OR '1'='1")
        assert not g.is_safe("<script>alert(1)</script>")

    def test_sweeper_lifecycle(self, quiet):
        g = Guard({**quiet, "sweepIntervalSeconds": 0.05})
        assert g.sweeper is not None
        g.close()
        assert g.sweeper is None

    def test_analyze_keywords(self, guard):
        decision = guard.analyze(method="get", path="/search", query={"q": "1 UNION SELECT password FROM users"},
                                 ip="192.0.2.5")
        assert ThreatType.SQL_INJECTION in {t.type for t in decision.threats}


# =============================================================================
# INPUT HELPERS
# =============================================================================

class TestInputHelpers:
    """is_safe, scan, sanitize and validation chains."""

    @pytest.mark.parametrize("value", BENIGN_CORPUS)
    def test_benign_is_safe(self, guard, value):
        assert guard.is_safe(value)

    @pytest.mark.parametrize("value", [
        "' OR '1'='1",
        "<script>alert(1)</script>",
        "; cat /etc/passwd",
        "../../etc/passwd",
        "{{7*7}}",
        "*)(uid=*))(|(uid=*",
        "http://169.254.169.254/latest/meta-data/",
    ])
    def test_attacks_not_safe(self, guard, value):
        assert not guard.is_safe(value)

    def test_context_restricts_types(self, guard):
        assert guard.is_safe("<script>alert(1)</script>", "sql")
        assert not guard.is_safe("<script>alert(1)</script>", "xss")

    def test_descriptive_context_scans_everything(self, guard):
        assert not guard.is_safe("' OR '1'='1", "username")
        assert not guard.is_safe("<script>alert(1)</script>", "email")
        assert guard.is_safe("John", "username")

    def test_scan_structured(self, guard):
        threats = guard.scan({"filter": {"$where": "sleep(1000)"}})
        assert ThreatType.NOSQL_INJECTION in {t.type for t in threats}

    def test_sanitize(self, guard):
        assert guard.sanitize("<b>") == "&lt;b&gt;"
        assert guard.sanitize_for("javascript:alert(1)", "url") == ""


class TestValidationChain:
    """validate(value).against(kinds).sanitize().result()"""

    def test_sql_tautology(self, guard):
        result = guard.validate("' OR '1'='1").against(["sql"]).result()
        assert result.safe is False
        assert result.threats
        assert all(t.type == ThreatType.SQL_INJECTION for t in result.threats)
        assert result.threats[0].severity in (Severity.HIGH, Severity.CRITICAL)
        assert result.sanitized is None

    def test_against_other_kind(self, guard):
        assert guard.validate("' OR '1'='1").against("xss").result().safe is True

    def test_chained_kinds_accumulate(self, guard):
        result = guard.validate("<script>alert(1)</script>").against("sql").against("xss").result()
        assert not result.safe

    def test_sanitize_step(self, guard):
        result = guard.validate("<i>hi</i>").sanitize().result()
        assert result.safe
        assert result.sanitized == "&lt;i&gt;hi&lt;&#x2F;i&gt;"
        assert result.to_dict()["sanitized"] == result.sanitized

    def test_chain_is_immutable(self, guard):
        base = guard.validate("<script>alert(1)</script>")
        base.against("sql")
        assert base.kinds == ()
        assert not base.result().safe

    def test_unknown_kind(self, guard):
        with pytest.raises(ValueError):
            guard.validate("x").against(["fortran"])

    def test_validate_and_sanitize(self, guard):
        result = guard.validate_and_sanitize("<script>alert(1)</script>")
        assert not result.safe
        assert "<" not in result.sanitized


# =============================================================================
# CSRF AND REPUTATION HELPERS
# =============================================================================

class TestStateHelpers:
    """CSRF tokens and IP reputation through the guard."""

    def test_csrf_roundtrip(self, guard):
        token = guard.generate_csrf_token("session-1")
        assert guard.validate_csrf_token("session-1", token)
        assert guard.get_csrf_token_info("session-1")["consumed"] is False
        assert guard.revoke_csrf_token("session-1")
        assert not guard.validate_csrf_token("session-1", token)

    def test_one_time_config(self, quiet):
        g = Guard({**quiet, "csrfOneTimeTokens": True})
        token = g.generate_csrf_token("s")
        assert g.validate_csrf_token("s", token)
        assert not g.validate_csrf_token("s", token)

    def test_token_expiry(self, clock, quiet):
        g = Guard({**quiet, "csrfTokenTtlSeconds": 10}, clock=clock)
        token = g.generate_csrf_token("s")
        clock.advance(11)
        assert not g.validate_csrf_token("s", token)

    def test_ip_blocking(self, guard):
        assert guard.get_ip_reputation("192.0.2.44") == 100
        guard.set_ip_blocked("192.0.2.44")
        assert guard.is_ip_blocked("192.0.2.44")
        assert guard.get_ip_reputation("192.0.2.44") == 0
        assert guard.get_stats()["blocked_ips"] == 1
        guard.clear_history("192.0.2.44")
        assert not guard.is_ip_blocked("192.0.2.44")
