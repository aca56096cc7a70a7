"""
Security Metrics Collector
"""

import threading
import time
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models import Decision


TOP_N = 10
TIMING_SAMPLES = 1000
MAX_TRACKED_IPS = 10_000
MAX_TRACKED_FINGERPRINTS = 10_000
FINGERPRINT_TTL_SECONDS = 24 * 3600


@dataclass
class SecurityMetrics:
    """Security metrics snapshot"""
    total_requests: int = 0
    blocked_requests: int = 0
    allowed_requests: int = 0
    threats_detected: int = 0
    threats_blocked: int = 0
    threats_by_type: Dict[str, int] = field(default_factory=dict)
    top_attacking_ips: Dict[str, int] = field(default_factory=dict)
    requests_by_hour: Dict[int, int] = field(default_factory=dict)
    fingerprints_seen: int = 0
    average_evaluation_ms: float = 0.0
    last_updated: datetime = field(default_factory=datetime.now)


class MetricsCollector:
    """Collect and summarize security metrics"""

    def __init__(self, clock: Callable[[], float] = time.time, max_ips: int = MAX_TRACKED_IPS,
                 max_fingerprints: int = MAX_TRACKED_FINGERPRINTS, fingerprint_ttl: float = FINGERPRINT_TTL_SECONDS):
        self.clock = clock
        self.max_ips = max_ips
        self.max_fingerprints = max_fingerprints
        self.fingerprint_ttl = fingerprint_ttl
        self.lock = threading.RLock()
        self.reset()

    def record_decision(self, ip: str, decision: Decision, elapsed_ms: float = 0.0,
                        now: Optional[datetime] = None):
        """Record one evaluated request"""
        now = now or datetime.now()
        with self.lock:
            self.total_requests += 1
            self.last_updated = now
            self.requests_by_hour[now.hour] += 1

            if decision.allowed:
                self.allowed_requests += 1
            else:
                self.blocked_requests += 1

            for threat in decision.threats:
                self.threats_detected += 1
                self.threats_by_type[threat.type.value] += 1
                self.attacking_ips[ip] += 1
                if threat.blocked:
                    self.threats_blocked += 1
            if len(self.attacking_ips) > self.max_ips:
                self._trim_attacking_ips()

            if decision.fingerprint is not None:
                self._touch_fingerprint(decision.fingerprint.fingerprint_id)

            if elapsed_ms > 0:
                self.timings.append(elapsed_ms)

    def get_metrics(self) -> SecurityMetrics:
        """Snapshot of the counters, copied under the lock"""
        with self.lock:
            return SecurityMetrics(
                total_requests=self.total_requests,
                blocked_requests=self.blocked_requests,
                allowed_requests=self.allowed_requests,
                threats_detected=self.threats_detected,
                threats_blocked=self.threats_blocked,
                threats_by_type=dict(self.threats_by_type.most_common()),
                top_attacking_ips=dict(self.attacking_ips.most_common(TOP_N)),
                requests_by_hour=dict(sorted(self.requests_by_hour.items())),
                fingerprints_seen=len(self.fingerprints),
                average_evaluation_ms=sum(self.timings) / len(self.timings) if self.timings else 0.0,
                last_updated=self.last_updated,
            )

    def _trim_attacking_ips(self):
        """Keep the heaviest half once the IP table is full"""
        self.attacking_ips = Counter(dict(self.attacking_ips.most_common(self.max_ips // 2)))

    def _touch_fingerprint(self, fingerprint_id: str):
        self.fingerprints[fingerprint_id] = self.clock()
        self.fingerprints.move_to_end(fingerprint_id)
        while len(self.fingerprints) > self.max_fingerprints:
            self.fingerprints.popitem(last=False)

    def prune(self) -> int:
        """Forget fingerprints not seen within the TTL"""
        cutoff = self.clock() - self.fingerprint_ttl
        removed = 0
        with self.lock:
            while self.fingerprints:
                oldest, seen = next(iter(self.fingerprints.items()))
                if seen > cutoff:
                    break
                del self.fingerprints[oldest]
                removed += 1
        return removed

    def top_attack_types(self, limit: int = TOP_N) -> List[Dict[str, object]]:
        with self.lock:
            return [{"type": name, "count": count} for name, count in self.threats_by_type.most_common(limit)]

    def reset(self):
        """Zero every counter"""
        with self.lock:
            self.total_requests = 0
            self.blocked_requests = 0
            self.allowed_requests = 0
            self.threats_detected = 0
            self.threats_blocked = 0
            self.threats_by_type: Counter = Counter()
            self.attacking_ips: Counter = Counter()
            self.requests_by_hour: Counter = Counter()
            self.fingerprints: "OrderedDict[str, float]" = OrderedDict()
            self.timings = deque(maxlen=TIMING_SAMPLES)
            self.last_updated = datetime.now()
