"""
Endpoint Access Control module
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

from ..config import AccessControlConfig, EndpointRule
from ..models import RequestInfo, SecurityThreat, Severity


PathPattern = Union[str, re.Pattern]


@dataclass(frozen=True)
class AccessDecision:
    """Result of the base allow / block evaluation"""
    allowed: bool
    reason: Optional[str] = None
    matched_rule: Optional[str] = None
    would_deny: bool = False


def glob_to_regex(pattern: str) -> re.Pattern:
    """A trailing * spans path segments, any other * stays inside one segment"""
    parts = []
    for index, chunk in enumerate(pattern.split("*")):
        if index:
            parts.append(".*" if index == pattern.count("*") and pattern.endswith("*") else "[^/]*")
        parts.append(re.escape(chunk))
    return re.compile("".join(parts))


class AccessControlMatcher:
    """Evaluate (method, path) against allowed, blocked and protected endpoint rules"""

    def __init__(self, config: Optional[AccessControlConfig] = None):
        self.config = config or AccessControlConfig()
        self.logger = logging.getLogger(__name__)
        self._globs = {}
        for pattern in self._all_patterns():
            if isinstance(pattern, str) and "*" in pattern:
                self._globs[pattern] = glob_to_regex(pattern)

    def _all_patterns(self) -> Iterable[PathPattern]:
        yield from self.config.blocked_endpoints
        for rule in self.config.allowed_endpoints + self.config.protected_endpoints:
            yield rule.path

    @property
    def mode(self) -> str:
        return self.config.mode

    def path_matches(self, pattern: PathPattern, path: str) -> bool:
        """Exact string, glob or regex match; case-sensitive"""
        if isinstance(pattern, re.Pattern):
            return pattern.fullmatch(path) is not None
        if "*" in pattern:
            compiled = self._globs.get(pattern)
            if compiled is None:
                compiled = self._globs.setdefault(pattern, glob_to_regex(pattern))
            return compiled.fullmatch(path) is not None
        return pattern == path

    def find_rule(self, rules: Sequence[EndpointRule], method: str, path: str) -> Optional[EndpointRule]:
        """First rule matching both path and method"""
        method = method.upper()
        for rule in rules:
            if not self.path_matches(rule.path, path):
                continue
            if rule.methods is not None and method not in rule.methods:
                continue
            return rule
        return None

    def has_auth(self, request: RequestInfo) -> bool:
        return bool(request.headers.get(self.config.require_auth_header, "").strip())

    def check(self, request: RequestInfo) -> AccessDecision:
        """Base evaluation; monitor mode reports but never denies"""
        decision = self._evaluate(request)
        if decision.allowed or self.mode != "monitor":
            return decision
        self.logger.info(f"Access control (monitor) would deny {request.method} {request.path}: {decision.reason}")
        return AccessDecision(allowed=True, reason=decision.reason, matched_rule=decision.matched_rule, would_deny=True)

    def _evaluate(self, request: RequestInfo) -> AccessDecision:
        path = request.path
        for pattern in self.config.blocked_endpoints:
            if self.path_matches(pattern, path):
                label = pattern if isinstance(pattern, str) else f"re:{pattern.pattern}"
                return AccessDecision(allowed=False, reason=f"Endpoint {path} is blocked", matched_rule=label)

        rule = self.find_rule(self.config.allowed_endpoints, request.method, path)
        if rule is not None:
            if rule.require_auth and not self.has_auth(request):
                return AccessDecision(allowed=False, reason="Authentication required", matched_rule=rule.label)
            return AccessDecision(allowed=True, matched_rule=rule.label)

        if self.config.unmatched_action == "block":
            return AccessDecision(allowed=False, reason=f"{request.method} {path} is not an allowed endpoint")
        return AccessDecision(allowed=True)

    def protection_rule(self, request: RequestInfo) -> Optional[EndpointRule]:
        """Protected endpoint rule for this request, if any"""
        return self.find_rule(self.config.protected_endpoints, request.method, request.path)

    def check_protection(self, rule: EndpointRule, request: RequestInfo,
                         threats: List[SecurityThreat]) -> Optional[str]:
        """Reason the protected rule denies the request, or None"""
        if rule.require_auth and not self.has_auth(request):
            return "Authentication required"
        if rule.max_threat_level:
            limit = Severity(rule.max_threat_level)
            worst = [t for t in threats if t.severity.at_least(limit)]
            if worst:
                return f"Threat level {worst[0].severity.value} meets limit {limit.value} for protected endpoint"
        return None
