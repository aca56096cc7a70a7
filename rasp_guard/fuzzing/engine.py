"""
Offline fuzzing engine

Mutates a target's parameters and headers with catalog payloads and scores every
mutation statically. No request is ever sent.
"""

import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..config import FuzzingConfig
from ..models import FuzzingResult, SecurityThreat, Severity, ThreatType, excerpt
from ..security_modules.injection_detector import InjectionDetector
from ..security_modules.threat_detector import Fragment
from ..security_modules.xss_detector import XSSDetector
from .payload_catalog import PayloadCatalog


FUZZ_HEADERS = ("Host", "X-Forwarded-For", "X-Real-IP", "Referer", "User-Agent")
HEADER_PAYLOAD_LIMIT = 10
RATE_LIMIT_BURST = 100
CRITICAL_SCORE = 70

# (threat type, payload shape, score)
PAYLOAD_SHAPES: List[Tuple[ThreatType, re.Pattern, int]] = [
    (ThreatType.SQL_INJECTION, re.compile(r"\b(?:select|union)\b|\bor\s+\S+\s*=|\bdrop\s+table\b", re.I), 50),
    (ThreatType.XSS, re.compile(r"<script|onerror|onload|javascript:", re.I), 45),
    (ThreatType.NOSQL_INJECTION, re.compile(r"\$(?:gt|ne|where|regex|exists)\b"), 45),
    (ThreatType.PATH_TRAVERSAL, re.compile(r"\.\./|\.\.\\|%2e%2e", re.I), 40),
    (ThreatType.COMMAND_INJECTION, re.compile(r"[;&|`]|\$\("), 50),
]


class FuzzTarget(BaseModel):
    """Description of an endpoint to fuzz"""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None

    @property
    def is_graphql(self) -> bool:
        return "graphql" in self.url.lower() or (isinstance(self.body, dict) and "query" in self.body)


class _Budget:
    """Wall clock budget for one run"""

    def __init__(self, timeout_ms: int, clock: Callable[[], float]):
        self.clock = clock
        self.deadline = clock() + timeout_ms / 1000
        self.timed_out = False

    def exhausted(self) -> bool:
        if not self.timed_out and self.clock() >= self.deadline:
            self.timed_out = True
        return self.timed_out


class FuzzingEngine:
    """Generate payload mutations for a target and score them statically"""

    def __init__(self, config: Optional[FuzzingConfig] = None, injection: Optional[InjectionDetector] = None,
                 xss: Optional[XSSDetector] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or FuzzingConfig()
        self.catalog = PayloadCatalog(self.config.custom_payloads)
        self.injection = injection or InjectionDetector()
        self.xss = xss or XSSDetector()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def fuzz(self, target: FuzzTarget) -> FuzzingResult:
        """Run every enabled sub-test against the target description"""
        if not self.config.enabled:
            return FuzzingResult(endpoint=target.url, method=target.method)

        started = self.clock()
        budget = _Budget(self.config.timeout, self.clock)
        vulnerabilities: List[SecurityThreat] = []
        tested = 0

        self.logger.info(f"Starting fuzzing test for {target.method} {target.url}")

        for location, params in (("query", target.query), ("body", self._body_params(target.body))):
            for field, value in params.items():
                payloads = self.catalog.mutate_value(value)[:self.config.max_payloads]
                found, count = self._score_all(payloads, field, location, budget)
                vulnerabilities.extend(found)
                tested += count

        header_limit = min(HEADER_PAYLOAD_LIMIT, self.config.max_payloads)
        for header in FUZZ_HEADERS:
            payloads = self.catalog.mutate_value("test")[:header_limit]
            found, count = self._score_all(payloads, header, "header", budget)
            vulnerabilities.extend(found)
            tested += count

        if self.config.auth_bypass_tests and not budget.exhausted():
            found = self._auth_bypass_tests(target)
            vulnerabilities.extend(found)
            tested += len(found)

        if self.config.rate_limit_tests and not budget.exhausted():
            vulnerabilities.append(self._rate_limit_test(target))
            tested += 1

        if self.config.graphql_introspection and target.is_graphql and not budget.exhausted():
            found = self._graphql_tests(target)
            vulnerabilities.extend(found)
            tested += len(found)

        duration_ms = int((self.clock() - started) * 1000)
        if budget.timed_out:
            self.logger.warning(f"Fuzzing of {target.url} stopped after {self.config.timeout}ms timeout")
        self.logger.info(
            f"Fuzzing completed: {tested} payloads tested, {len(vulnerabilities)} vulnerabilities found"
        )

        return FuzzingResult(
            endpoint=target.url,
            method=target.method.upper(),
            vulnerabilities=vulnerabilities,
            tested_payloads=tested,
            duration_ms=duration_ms,
            timed_out=budget.timed_out,
        )

    def _body_params(self, body: Any) -> Dict[str, Any]:
        if isinstance(body, dict):
            return body
        if body is None or body == "":
            return {}
        return {"body": body}

    def _score_all(self, payloads: List[Any], field: str, location: str,
                   budget: _Budget) -> Tuple[List[SecurityThreat], int]:
        found: List[SecurityThreat] = []
        count = 0
        for payload in payloads:
            if budget.exhausted():
                break
            count += 1
            threat = self.score_payload(payload, field, location)
            if threat is not None:
                found.append(threat)
        return found, count

    def score_payload(self, payload: Any, field: str, location: str) -> Optional[SecurityThreat]:
        """Classify one mutation by payload shape and detector confidence"""
        text = payload if isinstance(payload, str) else json.dumps(payload)
        fragment = Fragment(payload, location, field)
        findings = self.injection.detect(fragment) + self.xss.detect(fragment)
        strongest = max(findings, key=lambda t: t.confidence, default=None)

        threat_type, score = None, 0
        for shape_type, pattern, shape_score in PAYLOAD_SHAPES:
            if pattern.search(text):
                threat_type, score = shape_type, shape_score
                break

        if strongest is not None:
            if threat_type is None:
                threat_type, score = strongest.type, strongest.confidence
            else:
                score += strongest.confidence // 2

        if threat_type is None:
            return None
        score = min(100, score)
        return SecurityThreat(
            type=threat_type,
            severity=Severity.CRITICAL if score > CRITICAL_SCORE else Severity.HIGH,
            confidence=score,
            description=f"{threat_type.value} test payload in {location}.{field} (score: {score})",
            payload=excerpt(text),
            metadata={
                "field": field,
                "location": location,
                "vulnerability_score": score,
                "detector_findings": [t.type.value for t in findings],
            },
        )

    def _auth_bypass_tests(self, target: FuzzTarget) -> List[SecurityThreat]:
        return [
            SecurityThreat(
                type=ThreatType.AUTH_BYPASS_ATTEMPT,
                severity=Severity.LOW,
                description="Auth bypass test: authorization header would be sent with this payload",
                payload=payload,
                metadata={"field": "Authorization", "location": "header", "vulnerability_score": 0,
                          "target": target.url, "informational": True},
            )
            for payload in self.catalog.get_by_type("auth_bypass")[:self.config.max_payloads]
        ]

    def _rate_limit_test(self, target: FuzzTarget) -> SecurityThreat:
        return SecurityThreat(
            type=ThreatType.RATE_LIMIT_EXCEEDED,
            severity=Severity.LOW,
            description=f"Rate limit test: {RATE_LIMIT_BURST} rapid requests would be sent",
            metadata={"field": "", "location": "endpoint", "vulnerability_score": 0, "target": target.url,
                      "burst_size": RATE_LIMIT_BURST, "informational": True},
        )

    def _graphql_tests(self, target: FuzzTarget) -> List[SecurityThreat]:
        return [
            SecurityThreat(
                type=ThreatType.GRAPHQL_ABUSE,
                severity=Severity.MEDIUM,
                description="GraphQL introspection query test",
                payload=excerpt(payload),
                metadata={"field": "query", "location": "body", "vulnerability_score": 0,
                          "target": target.url, "type": "graphql-introspection", "informational": True},
            )
            for payload in self.catalog.graphql_payloads()
        ]
