"""
Data models for the RASP guard
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


CRITICAL_CONFIDENCE = 90
PAYLOAD_EXCERPT_LENGTH = 200


class ThreatType(str, Enum):
    """Threat taxonomy"""
    SQL_INJECTION = "sql_injection"
    NOSQL_INJECTION = "nosql_injection"
    COMMAND_INJECTION = "command_injection"
    XSS = "xss"
    CSRF = "csrf"
    PATH_TRAVERSAL = "path_traversal"
    XXE = "xxe"
    SSRF = "ssrf"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTH_BYPASS_ATTEMPT = "auth_bypass_attempt"
    ANOMALOUS_BEHAVIOR = "anomalous_behavior"
    LDAP_INJECTION = "ldap_injection"
    TEMPLATE_INJECTION = "template_injection"
    WEAK_JWT = "weak_jwt"
    GRAPHQL_ABUSE = "graphql_abuse"
    DANGEROUS_UPLOAD = "dangerous_upload"


class Severity(str, Enum):
    """Threat severity, ordered low to critical"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        """True when this severity meets or exceeds other"""
        return self.rank >= Severity(other).rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def severity_for_confidence(confidence: int) -> Severity:
    """Map a confidence score onto a severity"""
    if confidence >= CRITICAL_CONFIDENCE:
        return Severity.CRITICAL
    if confidence >= 60:
        return Severity.HIGH
    if confidence >= 35:
        return Severity.MEDIUM
    return Severity.LOW


def excerpt(value: Any, limit: int = PAYLOAD_EXCERPT_LENGTH) -> str:
    """Short printable excerpt of an offending value"""
    text = value if isinstance(value, str) else repr(value)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class SecurityThreat(BaseModel):
    """A single scored finding produced by a detector"""
    model_config = ConfigDict(frozen=True)

    type: ThreatType
    severity: Severity
    description: str
    payload: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
    blocked: bool = False
    confidence: int = Field(default=0, ge=0, le=100)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive_severity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        confidence = data.get("confidence") or 0
        # Critical confidence always wins over a weaker declared severity
        if confidence >= CRITICAL_CONFIDENCE:
            return {**data, "severity": Severity.CRITICAL}
        if data.get("severity") is None:
            return {**data, "severity": severity_for_confidence(confidence)}
        return data

    def mark_blocked(self) -> "SecurityThreat":
        """Return a copy flagged as blocked"""
        if self.blocked:
            return self
        return self.model_copy(update={"blocked": True})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class UploadedFile(BaseModel):
    """File part of a multipart request"""
    filename: str
    content_type: str = ""
    size: int = 0
    head: bytes = b""


class RequestInfo(BaseModel):
    """Normalized snapshot of an inbound request"""
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    path: str = "/"
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    ip: str = "unknown"
    session_id: Optional[str] = None
    files: List[UploadedFile] = Field(default_factory=list)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_headers(cls, value: Any) -> Dict[str, str]:
        if not value:
            return {}
        headers = {}
        for key, item in dict(value).items():
            if item is None:
                continue
            if isinstance(item, (list, tuple)):
                item = ", ".join(str(v) for v in item)
            headers[str(key).lower()] = str(item)
        return headers

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def body_size(self) -> int:
        """Approximate body size in bytes"""
        if self.body is None:
            return 0
        if isinstance(self.body, (bytes, bytearray)):
            return len(self.body)
        if isinstance(self.body, str):
            return len(self.body.encode("utf-8"))
        return len(repr(self.body).encode("utf-8"))


class RequestFingerprint(BaseModel):
    """Header-derived client fingerprint"""
    model_config = ConfigDict(frozen=True)

    user_agent: str = ""
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None
    connection: Optional[str] = None
    is_bot: bool = False
    bot_score: int = Field(default=0, ge=0, le=100)
    fingerprint_id: str
    matched_signature: Optional[str] = None

    @property
    def recommended_action(self) -> str:
        if self.bot_score >= 80:
            return "block"
        if self.bot_score >= 50:
            return "challenge"
        return "allow"


class Decision(BaseModel):
    """Outcome of evaluating one request"""
    allowed: bool = True
    threats: List[SecurityThreat] = Field(default_factory=list)
    blocked_by: Optional[str] = None
    matched_rule: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    fingerprint: Optional[RequestFingerprint] = None

    @property
    def highest_severity(self) -> Optional[Severity]:
        if not self.threats:
            return None
        return max((t.severity for t in self.threats), key=lambda s: s.rank)


class FuzzingResult(BaseModel):
    """Result of one offline fuzzing run"""
    model_config = ConfigDict(frozen=True)

    endpoint: str
    method: str
    vulnerabilities: List[SecurityThreat] = Field(default_factory=list)
    tested_payloads: int = 0
    duration_ms: int = 0
    timed_out: bool = False
    timestamp: datetime = Field(default_factory=datetime.now)


@dataclass
class EngineStats:
    """Engine statistics"""
    total_requests: int = 0
    blocked_count: int = 0
    allowed_count: int = 0
    start_time: datetime = field(default_factory=datetime.now)
