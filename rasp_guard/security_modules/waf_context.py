"""
Evaluation context for request analysis
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import EndpointRule
from ..models import RequestFingerprint, RequestInfo, SecurityThreat
from .access_control import AccessDecision


@dataclass
class EvaluationContext:
    """Mutable per-request state while the engine evaluates one request"""
    request: RequestInfo
    start_time: float = field(default_factory=time.perf_counter)
    fingerprint: Optional[RequestFingerprint] = None
    access: Optional[AccessDecision] = None
    protection_rule: Optional[EndpointRule] = None
    threats: List[SecurityThreat] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    blocked_by: Optional[str] = None
    matched_rule: Optional[str] = None

    @property
    def ip(self) -> str:
        return self.request.ip

    def add_threats(self, threats: List[SecurityThreat]):
        self.threats.extend(threats)

    def deny(self, blocked_by: str, reason: str, matched_rule: Optional[str] = None):
        """Record the first denial; later denials only add reasons"""
        if self.blocked_by is None:
            self.blocked_by = blocked_by
            if matched_rule is not None:
                self.matched_rule = matched_rule
        self.reasons.append(reason)

    @property
    def denied(self) -> bool:
        return self.blocked_by is not None

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000
