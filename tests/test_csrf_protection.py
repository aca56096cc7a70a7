"""
CSRF Protection Tests

Run with: pytest tests/test_csrf_protection.py -v
"""

import pytest

from rasp_guard import RequestInfo, Severity, ThreatType
from rasp_guard.security_modules.csrf_protection import CSRFDetector, CSRFTokenStore
from rasp_guard.security_modules.threat_detector import Fragment


@pytest.fixture
def store(clock):
    return CSRFTokenStore(ttl_seconds=60, clock=clock)


@pytest.fixture
def detector(store):
    return CSRFDetector(store, trusted_origins=["https://app.example.com"])


def post(**kwargs):
    data = {"method": "POST", "path": "/transfer", "headers": {"host": "api.example.com"}}
    headers = kwargs.pop("headers", {})
    data["headers"].update(headers)
    data.update(kwargs)
    return RequestInfo(**data)


def check(detector, request):
    return detector.detect(Fragment(request, "request", ""))


# =============================================================================
# TOKEN STORE
# =============================================================================

class TestTokenStore:
    """Issuing, validating and expiring tokens."""

    def test_generate_and_validate(self, store):
        token = store.generate("s1")
        assert len(token) == 64
        assert store.validate("s1", token)
        assert store.validate("s1", token)

    def test_wrong_token(self, store):
        store.generate("s1")
        assert not store.validate("s1", "not-the-token")

    def test_wrong_session(self, store):
        token = store.generate("s1")
        assert not store.validate("s2", token)

    def test_missing_values(self, store):
        assert not store.validate("", "x")
        assert not store.validate("s1", "")

    def test_regenerate_replaces(self, store):
        first = store.generate("s1")
        second = store.generate("s1")
        assert first != second
        assert not store.validate("s1", first)
        assert store.validate("s1", second)

    def test_expiry(self, store, clock):
        token = store.generate("s1")
        clock.advance(61)
        assert not store.validate("s1", token)
        assert store.get_token_info("s1") is None

    def test_one_time(self, store):
        token = store.generate("s1")
        assert store.validate("s1", token, one_time=True)
        assert not store.validate("s1", token, one_time=True)
        assert store.get_token_info("s1")["consumed"] is True

    def test_token_info(self, store, clock):
        store.generate("s1")
        clock.advance(20)
        info = store.get_token_info("s1")
        assert info["remaining_ttl"] == pytest.approx(40)
        assert info["expired"] is False

    def test_revoke(self, store):
        token = store.generate("s1")
        assert store.revoke("s1") is True
        assert store.revoke("s1") is False
        assert not store.validate("s1", token)

    def test_sweep(self, store, clock):
        store.generate("old")
        clock.advance(30)
        store.generate("new")
        clock.advance(31)
        assert store.sweep() == 1
        assert store.get_token_info("new") is not None


# =============================================================================
# REQUEST CHECKS
# =============================================================================

class TestCSRFDetector:
    """Origin, referer and token checks on state-changing requests."""

    def test_safe_methods_skipped(self, detector):
        request = RequestInfo(method="GET", path="/", headers={"origin": "https://evil.example"})
        assert check(detector, request) == []

    def test_trusted_origin(self, detector):
        assert check(detector, post(headers={"origin": "https://app.example.com"})) == []

    def test_same_host_origin(self, detector):
        assert check(detector, post(headers={"origin": "https://api.example.com"})) == []

    def test_untrusted_origin(self, detector):
        threats = check(detector, post(headers={"origin": "https://evil.example"}))
        assert len(threats) == 1
        assert threats[0].type == ThreatType.CSRF
        assert threats[0].severity == Severity.HIGH
        assert threats[0].description == "CSRF attack detected: Untrusted origin"

    def test_untrusted_referer(self, detector):
        threats = check(detector, post(headers={"referer": "https://evil.example/page"}))
        assert threats[0].description == "CSRF attack detected: Untrusted referer"

    def test_untrusted_origin_with_valid_token(self, detector, store):
        token = store.generate("sess")
        request = post(headers={"origin": "https://evil.example", "x-csrf-token": token}, session_id="sess")
        assert check(detector, request) == []

    def test_token_in_body(self, detector, store):
        token = store.generate("sess")
        request = post(headers={"origin": "https://evil.example"}, session_id="sess", body={"_csrf": token})
        assert check(detector, request) == []

    def test_invalid_token_without_origin(self, detector, store):
        store.generate("sess")
        request = post(headers={"x-csrf-token": "forged"}, session_id="sess")
        threats = check(detector, request)
        assert threats[0].description == "CSRF attack detected: Invalid or missing token"

    def test_session_with_token_but_none_sent(self, detector, store):
        store.generate("sess")
        threats = check(detector, post(session_id="sess"))
        assert threats[0].metadata["has_token"] is False

    def test_non_browser_client_passes(self, detector):
        assert check(detector, post()) == []

    def test_added_origin(self, detector):
        detector.add_trusted_origin("https://partner.example/")
        assert check(detector, post(headers={"origin": "https://partner.example"})) == []

    def test_empty_allowlist_trusts_any_origin(self, store):
        open_detector = CSRFDetector(store)
        assert check(open_detector, post(headers={"origin": "https://spa.example.com"})) == []
        assert check(open_detector, post(headers={"referer": "https://spa.example.com/app"})) == []

    def test_empty_allowlist_still_rejects_malformed_origin(self, store):
        threats = check(CSRFDetector(store), post(headers={"origin": "null"}))
        assert threats[0].description == "CSRF attack detected: Untrusted origin"
