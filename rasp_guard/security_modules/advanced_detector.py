"""
Advanced Threat Detection module

LDAP filter injection, server-side template injection, dangerous file uploads,
weak JWTs and abusive GraphQL documents.
"""

import re
import time
from typing import Any, Iterator, List, Optional, Tuple

import jwt

from ..errors import ParseFailure
from ..models import SecurityThreat, ThreatType, UploadedFile, excerpt
from . import normalizer
from .threat_detector import Fragment, InputItem, ThreatDetector, extract_inputs


# LDAP
LDAP_SAFE = re.compile(r"^[\w.\-@ ']*$")
LDAP_RULES: List[Tuple[re.Pattern, int, str]] = [
    (re.compile(r"\)\s*\("), 40, "filter breakout"),
    (re.compile(r"\(\s*[|&!]\s*\("), 40, "injected filter operator"),
    (re.compile(r"\(\s*[|&]\s*\)"), 30, "absolute true/false filter"),
    (re.compile(r"\b(?:cn|uid|ou|dc|objectclass|mail|sn|givenname|samaccountname|userpassword|memberof)\s*=\s*\*", re.I), 40, "wildcard attribute match"),
    (re.compile(r"\*\)"), 20, "wildcard close"),
    (re.compile(r"\x00"), 20, "null byte"),
]
LDAP_THRESHOLD = 50

# Template injection
TEMPLATE_DELIMITERS: List[Tuple[re.Pattern, int, str]] = [
    (re.compile(r"\{\{(.{0,500}?)\}\}", re.S), 40, "{{ }}"),
    (re.compile(r"\$\{(.{0,500}?)\}", re.S), 40, "${ }"),
    (re.compile(r"<%=?(.{0,500}?)%>", re.S), 40, "<% %>"),
    (re.compile(r"\{%(.{0,500}?)%\}", re.S), 40, "{% %}"),
    (re.compile(r"#\{(.{0,500}?)\}", re.S), 30, "#{ }"),
]
TEMPLATE_DANGEROUS = re.compile(
    r"__class__|__mro__|__subclasses__|__globals__|__builtins__|__import__|\bconfig\b|\bself\b|"
    r"\brequest\.|_self\.env|\bRuntime\b|ProcessBuilder|getClass|\bexec\b|\beval\b|\bsystem\b|"
    r"\bpopen\b|\bos\.|subprocess|\bT\(|\blipsum\b|\bcycler\b|\bjoiner\b|\bnamespace\b",
    re.I,
)
TEMPLATE_ARITHMETIC = re.compile(r"\d+\s*[*+\-/]\s*\d+")
TEMPLATE_DIRECTIVES: List[Tuple[re.Pattern, int]] = [
    (re.compile(r"<#(?:assign|import|include)\b", re.I), 60),
    (re.compile(r"#set\s*\(", re.I), 40),
    (re.compile(r"\{php\}", re.I), 60),
    (re.compile(r"__\$\{"), 50),
]
TEMPLATE_DANGEROUS_BONUS = 40
TEMPLATE_ARITHMETIC_BONUS = 30
TEMPLATE_THRESHOLD = 40

# File upload
DANGEROUS_EXTENSIONS = {
    "php", "phtml", "php3", "php4", "php5", "php7", "phps", "pht", "phar",
    "jsp", "jspx", "jsw", "jsv", "jspf", "asp", "aspx", "asa", "asax", "ascx", "ashx", "asmx", "cer",
    "exe", "dll", "bat", "cmd", "com", "scr", "vbs", "js", "jar", "msi", "hta",
    "sh", "bash", "zsh", "csh", "ksh", "pl", "py", "rb", "ps1", "cgi", "htaccess",
}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "ico"}
WEBSHELL_CONTENT = re.compile(
    rb"<\?php|<%@|<jsp:|\beval\s*\(|base64_decode|shell_exec|passthru|\bsystem\s*\(|phpinfo\s*\(|AddType.{0,40}php|SetHandler",
    re.I,
)
DANGEROUS_MIME = re.compile(r"application/(?:x-php|x-httpd-php|x-sh|x-msdownload|java-archive)", re.I)

# JWT
JWT_SHAPE = re.compile(r"^eyJ[A-Za-z0-9_\-]*(?:\.[A-Za-z0-9_\-]*)*$")
JWT_DECODE_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}
JWT_FAR_FUTURE_SECONDS = 10 * 365 * 24 * 3600
JWT_THRESHOLD = 30
JWT_MALFORMED_CONFIDENCE = 30

# GraphQL
GRAPHQL_INTROSPECTION = re.compile(r"\b__(?:schema|type)\b")
GRAPHQL_OPERATION = re.compile(r"^\s*(?:query|mutation|subscription|fragment)\b|^\s*\{")
GRAPHQL_MAX_CHARS = 100_000
GRAPHQL_DEPTH_CAP = 256


def graphql_depth(document: str) -> int:
    """Maximum selection set nesting, ignoring strings and comments"""
    if len(document) > GRAPHQL_MAX_CHARS:
        raise ParseFailure(f"document longer than {GRAPHQL_MAX_CHARS} characters", kind="graphql")

    depth = 0
    deepest = 0
    i = 0
    length = len(document)
    while i < length:
        char = document[i]
        if char == "#":
            newline = document.find("\n", i)
            i = length if newline == -1 else newline + 1
            continue
        if char == '"':
            if document.startswith('"""', i):
                end = document.find('"""', i + 3)
                if end == -1:
                    raise ParseFailure("unterminated block string", kind="graphql")
                i = end + 3
                continue
            i += 1
            while i < length and document[i] != '"':
                i += 2 if document[i] == "\\" else 1
            if i >= length:
                raise ParseFailure("unterminated string", kind="graphql")
            i += 1
            continue
        if char == "{":
            depth += 1
            deepest = max(deepest, depth)
            if depth > GRAPHQL_DEPTH_CAP:
                # No need to keep walking a pathological document
                return deepest
        elif char == "}":
            depth -= 1
            if depth < 0:
                raise ParseFailure("unbalanced braces", kind="graphql")
        i += 1

    if depth != 0:
        raise ParseFailure("unbalanced braces", kind="graphql")
    return deepest


class AdvancedDetector(ThreatDetector):
    """LDAP, template, upload, JWT and GraphQL checks"""

    name = "advanced"
    handles_files = True

    def __init__(self, graphql_max_depth: int = 7, max_upload_size: int = 10 * 1024 * 1024,
                 clock=time.time):
        super().__init__()
        self.graphql_max_depth = graphql_max_depth
        self.max_upload_size = max_upload_size
        self.clock = clock

    def _detect(self, fragment: Fragment, context: Optional[Any]) -> Iterator[SecurityThreat]:
        if isinstance(fragment.value, UploadedFile):
            yield from self.check_upload(fragment.value, fragment)
            return

        if fragment.location == "header" and fragment.field == "authorization":
            token = self._bearer_token(fragment.value)
            if token:
                yield from self.check_jwt(token, fragment, fragment.field)
            return

        for item in extract_inputs(fragment.value):
            if item.is_key:
                continue
            field = ".".join(part for part in (fragment.field, item.field) if part)
            value = item.value
            if value.startswith("eyJ"):
                yield from self.check_jwt(value, fragment, field)
                continue
            if self._looks_like_graphql(item, value, fragment, context):
                yield from self.check_graphql(value, fragment, field)
                continue
            decoded = normalizer.decode(value)
            yield from self.check_ldap(decoded, item, fragment, field)
            yield from self.check_template(decoded, item, fragment, field)

    # LDAP

    def check_ldap(self, value: str, item: InputItem, fragment: Fragment, field: str) -> Iterator[SecurityThreat]:
        if LDAP_SAFE.match(value):
            return
        hits = [(weight, label) for pattern, weight, label in LDAP_RULES if pattern.search(value)]
        score = min(100, sum(weight for weight, _ in hits))
        if score >= LDAP_THRESHOLD:
            yield SecurityThreat(
                type=ThreatType.LDAP_INJECTION,
                confidence=score,
                description=f"LDAP Injection - {hits[0][1]}",
                payload=excerpt(item.value),
                metadata={"location": fragment.location, "field": field, "signals": [label for _, label in hits]},
            )

    # Template injection

    def check_template(self, value: str, item: InputItem, fragment: Fragment, field: str) -> Iterator[SecurityThreat]:
        best = 0
        delimiter = None
        for pattern, weight, label in TEMPLATE_DELIMITERS:
            for match in pattern.finditer(value):
                inner = match.group(1)
                score = weight
                if TEMPLATE_DANGEROUS.search(inner):
                    score += TEMPLATE_DANGEROUS_BONUS
                if TEMPLATE_ARITHMETIC.search(inner):
                    score += TEMPLATE_ARITHMETIC_BONUS
                if score > best:
                    best, delimiter = score, label

        directive = sum(weight for pattern, weight in TEMPLATE_DIRECTIVES if pattern.search(value))
        score = min(100, best + directive)
        if score >= TEMPLATE_THRESHOLD:
            yield SecurityThreat(
                type=ThreatType.TEMPLATE_INJECTION,
                confidence=score,
                description=f"Template injection - expression delimiter {delimiter}" if delimiter else "Template injection - template directive",
                payload=excerpt(item.value),
                metadata={"location": fragment.location, "field": field, "delimiter": delimiter},
            )

    # File upload

    def check_upload(self, upload: UploadedFile, fragment: Fragment) -> Iterator[SecurityThreat]:
        name = upload.filename.strip().lower()
        issues: List[Tuple[int, str]] = []

        if "\x00" in name or "%00" in name:
            issues.append((90, "null byte in filename"))
            name = re.split(r"\x00|%00", name)[0]

        parts = name.rsplit("/", 1)[-1].rsplit("\\", 1)[-1].split(".")
        extensions = parts[1:] if len(parts) > 1 else []
        if parts and parts[0] == "" and len(parts) == 2:
            # Dotfile such as .htaccess
            extensions = [parts[1]]

        if extensions and extensions[-1] in DANGEROUS_EXTENSIONS:
            issues.append((80, f"dangerous extension .{extensions[-1]}"))
        inner = [ext for ext in extensions[:-1] if ext in DANGEROUS_EXTENSIONS]
        if inner:
            issues.append((70, f"double extension .{inner[0]}.{extensions[-1]}"))

        if upload.size > self.max_upload_size:
            issues.append((50, f"file exceeds {self.max_upload_size} bytes"))

        content_type = upload.content_type.lower()
        if extensions and extensions[-1] in IMAGE_EXTENSIONS and content_type and not content_type.startswith("image/"):
            issues.append((40, f"MIME type {content_type} does not match image extension"))
        if DANGEROUS_MIME.search(content_type):
            issues.append((70, f"dangerous MIME type {content_type}"))

        if upload.head and WEBSHELL_CONTENT.search(upload.head):
            issues.append((70, "executable content signature"))

        if not issues:
            return
        yield SecurityThreat(
            type=ThreatType.DANGEROUS_UPLOAD,
            confidence=min(100, sum(weight for weight, _ in issues)),
            description=f"Dangerous file upload: {issues[0][1]}",
            payload=excerpt(upload.filename),
            metadata={"location": "file", "field": fragment.field, "filename": upload.filename,
                      "issues": [label for _, label in issues]},
        )

    # JWT

    def _bearer_token(self, header: str) -> Optional[str]:
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() == "bearer" and token.strip().startswith("eyJ"):
            return token.strip()
        return None

    def check_jwt(self, token: str, fragment: Fragment, field: str) -> Iterator[SecurityThreat]:
        segments = token.split(".")
        if len(segments) != 3 or not JWT_SHAPE.match(token):
            yield self._jwt_threat(JWT_MALFORMED_CONFIDENCE, [f"malformed token with {len(segments)} segments"],
                                   token, fragment, field, malformed=True)
            return

        try:
            header = jwt.get_unverified_header(token)
            claims = jwt.decode(token, options=JWT_DECODE_OPTIONS)
        except jwt.InvalidTokenError as e:
            yield self._jwt_threat(JWT_MALFORMED_CONFIDENCE, [f"undecodable token: {e}"],
                                   token, fragment, field, malformed=True)
            return

        issues: List[Tuple[int, str]] = []
        alg = str(header.get("alg", "")).lower()
        if alg in ("", "none"):
            issues.append((95, "alg none"))
        elif alg.startswith("hs"):
            issues.append((30, f"symmetric algorithm {alg.upper()}"))
        if alg not in ("", "none") and not segments[2]:
            issues.append((50, "signature stripped"))

        kid = str(header.get("kid", ""))
        if kid and re.search(r"\.\./|['\";|`$]", kid):
            issues.append((60, "suspicious kid header"))
        for key in ("jku", "x5u", "jwk"):
            if key in header:
                issues.append((50, f"embedded key reference {key}"))

        exp = claims.get("exp", 0)
        if "exp" in claims and exp is None:
            issues.append((30, "null expiry"))
        elif isinstance(exp, (int, float)) and exp - self.clock() > JWT_FAR_FUTURE_SECONDS:
            issues.append((30, "expiry far in the future"))

        score = min(100, sum(weight for weight, _ in issues))
        if score >= JWT_THRESHOLD:
            yield self._jwt_threat(score, [label for _, label in issues], token, fragment, field,
                                   alg=alg or "none")

    def _jwt_threat(self, confidence: int, issues: List[str], token: str, fragment: Fragment,
                    field: str, **metadata: Any) -> SecurityThreat:
        return SecurityThreat(
            type=ThreatType.WEAK_JWT,
            confidence=confidence,
            description=f"Insecure JWT: {issues[0]}",
            payload=excerpt(token, 80),
            metadata={"location": fragment.location, "field": field, "issues": issues, **metadata},
        )

    # GraphQL

    def _looks_like_graphql(self, item: InputItem, value: str, fragment: Fragment, context: Optional[Any]) -> bool:
        """A `query` field, a raw document body, or any string posted to a GraphQL path"""
        if not GRAPHQL_OPERATION.match(value) or "{" not in value:
            return False
        if item.field.rsplit(".", 1)[-1] == "query":
            return True
        if fragment.location == "body" and not item.field:
            return True
        request = getattr(context, "request", None)
        return fragment.location == "body" and request is not None and "graphql" in request.path.lower()

    def check_graphql(self, document: str, fragment: Fragment, field: str) -> Iterator[SecurityThreat]:
        try:
            depth = graphql_depth(document)
        except ParseFailure as e:
            yield self.parse_failure_threat(e, Fragment(document, fragment.location, field))
            depth = None

        if depth is not None and depth > self.graphql_max_depth:
            yield SecurityThreat(
                type=ThreatType.GRAPHQL_ABUSE,
                confidence=min(100, 60 + (depth - self.graphql_max_depth) * 5),
                description=f"GraphQL query depth {depth} exceeds {self.graphql_max_depth}",
                payload=excerpt(document),
                metadata={"location": fragment.location, "field": field, "depth": depth,
                          "max_depth": self.graphql_max_depth, "depth_exceeded": True},
            )

        if GRAPHQL_INTROSPECTION.search(document):
            yield SecurityThreat(
                type=ThreatType.GRAPHQL_ABUSE,
                confidence=50,
                description="GraphQL introspection query",
                payload=excerpt(document),
                metadata={"location": fragment.location, "field": field, "introspection": True},
            )
