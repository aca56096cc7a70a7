"""
IP Reputation and rate tracking

One immutable ReputationRecord per client IP, replaced atomically through the
sharded store. Reputation is derived from the record, never stored.
"""

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from ..config import RateLimitingConfig
from ..models import RequestInfo, SecurityThreat, Severity, ThreatType, excerpt
from .rate_limiter import RateCheck, RateLimit, RateWindow
from .state_store import ShardedStore


THREAT_WEIGHT = 5
MANUAL_BLOCK_PENALTY = 100
SUSPICIOUS_REPUTATION = 50
THREAT_DECAY_MS = 300_000
HISTORY_SIZE = 10
MIN_HISTORY = 5
SCAN_UNIQUE_PATHS = 8
AUTH_PATH_ATTEMPTS = 5
GLOBAL_WINDOW = "global"

SUSPICIOUS_USER_AGENTS = [
    re.compile(p, re.I) for p in (r"bot", r"crawler", r"spider", r"scraper", r"curl", r"wget", r"python", r"go-http")
]
AUTH_PATH = re.compile(r"login|auth|admin")


@dataclass(frozen=True)
class RequestTrace:
    """Minimal view of a past request kept for behavior checks"""
    path: str
    timestamp: float


@dataclass(frozen=True)
class ReputationRecord:
    """Per-IP state"""
    ip: str
    first_seen: float
    last_seen: float
    request_count: int = 0
    threat_count: int = 0
    last_threat_at: float = 0.0
    manually_blocked: bool = False
    windows: Dict[str, RateWindow] = field(default_factory=dict)
    history: Tuple[RequestTrace, ...] = ()

    def effective_threats(self, now: float) -> int:
        """Threat count after time decay, one threat forgiven per decay period"""
        if not self.threat_count:
            return 0
        forgiven = int((now - self.last_threat_at) * 1000 // THREAT_DECAY_MS)
        return max(0, self.threat_count - forgiven)

    def score(self, now: float) -> int:
        penalty = self.effective_threats(now) * THREAT_WEIGHT
        if self.manually_blocked:
            penalty += MANUAL_BLOCK_PENALTY
        return max(0, min(100, 100 - penalty))


def counts_against_reputation(threat: SecurityThreat) -> bool:
    """High and critical findings, plus any rate limit breach"""
    if threat.metadata.get("check") == "ip_blocked":
        return False
    return threat.type == ThreatType.RATE_LIMIT_EXCEEDED or threat.severity.at_least(Severity.HIGH)


class ReputationTracker:
    """Track per-IP activity, reputation and rate windows"""

    def __init__(self, config: Optional[RateLimitingConfig] = None, clock: Callable[[], float] = time.time,
                 store: Optional[ShardedStore] = None, max_request_size: int = 10 * 1024 * 1024):
        self.config = config or RateLimitingConfig()
        self.clock = clock
        self.store: ShardedStore[ReputationRecord] = store or ShardedStore()
        self.max_request_size = max_request_size
        self.logger = logging.getLogger(__name__)

    @property
    def base_limit(self) -> RateLimit:
        return RateLimit(self.config.max_requests, self.config.window_ms)

    def _live(self, record: Optional[ReputationRecord], now: float) -> Optional[ReputationRecord]:
        """Drop a record idle past the retention window; manual blocks never expire"""
        if record is None:
            return None
        if record.manually_blocked:
            return record
        if (now - record.last_seen) * 1000 >= self.config.retention_ms:
            return None
        return record

    def _record(self, ip: str, current: Optional[ReputationRecord], now: float) -> ReputationRecord:
        return self._live(current, now) or ReputationRecord(ip=ip, first_seen=now, last_seen=now)

    def get_record(self, ip: str) -> Optional[ReputationRecord]:
        now = self.clock()

        def read(current):
            live = self._live(current, now)
            return live, live

        return self.store.compute(ip, read)

    def observe(self, request: RequestInfo) -> Optional[ReputationRecord]:
        """Count a request and append it to the history, returning the prior record"""
        now = self.clock()

        def apply(current):
            previous = self._live(current, now)
            record = previous or ReputationRecord(ip=request.ip, first_seen=now, last_seen=now)
            history = (record.history + (RequestTrace(request.path, now),))[-HISTORY_SIZE:]
            return replace(record, request_count=record.request_count + 1, last_seen=now, history=history), previous

        return self.store.compute(request.ip, apply)

    def check_rate(self, ip: str, limit: Optional[RateLimit] = None, key: str = GLOBAL_WINDOW) -> RateCheck:
        """Count one request in the window for key and report whether the budget is exceeded"""
        now = self.clock()
        base = limit or self.base_limit

        def apply(current):
            record = self._record(ip, current, now)
            effective = base
            throttled = False
            if self.config.dynamic_throttling and record.score(now) < SUSPICIOUS_REPUTATION:
                effective = base.scaled(self.config.suspicious_ip_multiplier)
                throttled = True
            window = record.windows.get(key) or RateWindow(started_at=now)
            window = window.hit(now, effective)
            updated = replace(record, last_seen=now, windows={**record.windows, key: window})
            check = RateCheck(
                key=key,
                count=window.count,
                limit=effective.max_requests,
                window_ms=effective.window_ms,
                reset_in_ms=window.reset_in_ms(now, effective),
                throttled=throttled,
            )
            return updated, check

        return self.store.compute(ip, apply)

    def rate_limit_threat(self, ip: str, check: RateCheck) -> SecurityThreat:
        return SecurityThreat(
            type=ThreatType.RATE_LIMIT_EXCEEDED,
            severity=Severity.MEDIUM,
            confidence=50,
            description=f"Rate limit exceeded: {check.count} requests in {check.window_ms}ms",
            payload=ip,
            metadata={
                "ip": ip,
                "window": check.key,
                "request_count": check.count,
                "limit": check.limit,
                "reset_in_ms": check.reset_in_ms,
                "throttled": check.throttled,
            },
        )

    def record_activity(self, ip: str, threats: List[SecurityThreat]) -> int:
        """Add this request's findings to the IP's threat count and return the new score"""
        now = self.clock()
        counted = sum(1 for threat in threats if counts_against_reputation(threat))

        def apply(current):
            record = self._record(ip, current, now)
            if counted:
                record = replace(record, threat_count=record.effective_threats(now) + counted, last_threat_at=now)
            record = replace(record, last_seen=now)
            return record, record.score(now)

        score = self.store.compute(ip, apply)
        if counted:
            self.logger.debug(f"Reputation for {ip} now {score} after {counted} threat(s)")
        return score

    def get_reputation_score(self, ip: str) -> int:
        """Reputation in [0, 100]; unknown IPs score 100"""
        record = self.get_record(ip)
        return record.score(self.clock()) if record else 100

    def is_blocked(self, ip: str) -> bool:
        record = self.get_record(ip)
        if record is None:
            return False
        return record.manually_blocked or record.score(self.clock()) == 0

    def set_ip_blocked(self, ip: str, blocked: bool):
        """Manual block override, independent of the computed score"""
        now = self.clock()

        def apply(current):
            record = self._record(ip, current, now)
            return replace(record, manually_blocked=blocked), None

        self.store.compute(ip, apply)
        self.logger.info(f"IP {ip} {'blocked' if blocked else 'unblocked'} manually")

    def blocked_ips(self) -> List[str]:
        now = self.clock()
        return [record.ip for record in self.store.values()
                if record.manually_blocked or (self._live(record, now) and record.score(now) == 0)]

    def clear_history(self, ip: Optional[str] = None):
        """Forget one IP, or every IP"""
        if ip is None:
            self.store.clear()
        else:
            self.store.delete(ip)

    def sweep(self) -> int:
        """Drop records idle past the retention window"""
        now = self.clock()
        return self.store.sweep(lambda _, record: self._live(record, now) is None)

    def __len__(self) -> int:
        return len(self.store)

    # Behavior checks

    def analyze_behavior(self, request: RequestInfo, previous: Optional[ReputationRecord]) -> List[SecurityThreat]:
        """Suspicious user agent, scanning, auth path hammering and oversized bodies"""
        threats: List[SecurityThreat] = []
        ip = request.ip

        user_agent = request.user_agent
        if user_agent and any(p.search(user_agent) for p in SUSPICIOUS_USER_AGENTS):
            threats.append(SecurityThreat(
                type=ThreatType.ANOMALOUS_BEHAVIOR,
                severity=Severity.MEDIUM,
                confidence=40,
                description="Suspicious user agent detected",
                payload=excerpt(user_agent),
                metadata={"ip": ip, "user_agent": user_agent, "check": "user_agent"},
            ))

        history = previous.history if previous else ()
        if len(history) >= MIN_HISTORY:
            recent = history[-HISTORY_SIZE:]
            unique_paths = {trace.path for trace in recent}
            if len(recent) == HISTORY_SIZE and len(unique_paths) > SCAN_UNIQUE_PATHS:
                threats.append(SecurityThreat(
                    type=ThreatType.ANOMALOUS_BEHAVIOR,
                    severity=Severity.MEDIUM,
                    confidence=50,
                    description="Potential scanning activity detected",
                    metadata={"ip": ip, "unique_endpoints": len(unique_paths), "check": "scanning"},
                ))

            attempts = sum(1 for trace in recent if AUTH_PATH.search(trace.path))
            if attempts > AUTH_PATH_ATTEMPTS:
                threats.append(SecurityThreat(
                    type=ThreatType.AUTH_BYPASS_ATTEMPT,
                    severity=Severity.HIGH,
                    confidence=70,
                    description="Potential authentication bypass attempt detected",
                    metadata={"ip": ip, "attempts": attempts, "check": "auth_paths"},
                ))

        if request.body_size > self.max_request_size:
            threats.append(SecurityThreat(
                type=ThreatType.ANOMALOUS_BEHAVIOR,
                severity=Severity.MEDIUM,
                confidence=50,
                description="Unusually large request body detected",
                metadata={"ip": ip, "body_size": request.body_size, "check": "body_size"},
            ))

        return threats
