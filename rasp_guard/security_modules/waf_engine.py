"""
WAF Engine - request decision engine
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..config import GuardConfig
from ..models import Decision, EngineStats, RequestInfo, SecurityThreat, Severity, ThreatType
from .access_control import AccessControlMatcher
from .advanced_detector import AdvancedDetector
from .context_extractor import ContextExtractor
from .csrf_protection import CSRFDetector, CSRFTokenStore
from .fingerprint_generator import FingerprintGenerator
from .injection_detector import InjectionDetector
from .metrics_collector import MetricsCollector
from .rate_limiter import RateLimit
from .reputation_tracker import ReputationTracker
from .rule_loader import RuleLoader
from .threat_detector import ThreatDetector
from .waf_context import EvaluationContext
from .xss_detector import XSSDetector


AUTOMATED_TRAFFIC_CONFIDENCE = 80


class DecisionEngine:
    """Compose detectors, reputation, fingerprinting and access control into one decision"""

    def __init__(self, config: Optional[GuardConfig] = None, clock: Callable[[], float] = time.time,
                 reputation: Optional[ReputationTracker] = None, csrf_store: Optional[CSRFTokenStore] = None):
        self.config = config or GuardConfig()
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.rule_sets = RuleLoader().load_default_rules()
        self.extractor = ContextExtractor()
        self.fingerprinter = FingerprintGenerator()
        self.access = AccessControlMatcher(self.config.access_control)
        self.reputation = reputation or ReputationTracker(
            self.config.rate_limiting, clock=clock, max_request_size=self.config.max_request_size
        )
        self.csrf_store = csrf_store or CSRFTokenStore(self.config.csrf_token_ttl_seconds, clock=clock)
        self.metrics = MetricsCollector(clock=clock)
        self.stats = EngineStats()
        self.block_threshold = Severity(self.config.default_block_threshold)
        self.lock = threading.Lock()
        self.detectors: List[ThreatDetector] = self._build_detectors()

    def _build_detectors(self) -> List[ThreatDetector]:
        """Enabled detectors in evaluation order"""
        detectors: List[ThreatDetector] = []
        if self.config.injection_protection:
            detectors.append(InjectionDetector(self.rule_sets))
            detectors.append(AdvancedDetector(
                graphql_max_depth=self.config.graphql_max_depth,
                max_upload_size=self.config.max_upload_size,
                clock=self.clock,
            ))
        if self.config.xss_protection:
            detectors.append(XSSDetector(self.rule_sets[ThreatType.XSS]))
        if self.config.csrf_protection:
            detectors.append(CSRFDetector(
                self.csrf_store,
                trusted_origins=self.config.trusted_origins,
                one_time_tokens=self.config.csrf_one_time_tokens,
            ))
        return detectors

    def detector(self, name: str) -> Optional[ThreatDetector]:
        for detector in self.detectors:
            if detector.name == name:
                return detector
        return None

    @property
    def monitor_only(self) -> bool:
        return self.access.mode == "monitor"

    def evaluate(self, request: RequestInfo) -> Decision:
        """Evaluate one request and return the decision"""
        ctx = EvaluationContext(request)
        previous = self.reputation.observe(request)

        # Step 1: fingerprint
        if self.config.request_fingerprinting.enabled:
            ctx.fingerprint = self.fingerprinter.analyze(request.headers)

        if self.reputation.is_blocked(request.ip):
            ctx.add_threats([SecurityThreat(
                type=ThreatType.ANOMALOUS_BEHAVIOR,
                confidence=100,
                description=f"IP {request.ip} is blocked",
                payload=request.ip,
                metadata={"ip": request.ip, "check": "ip_blocked"},
            )])

        # Step 2: base access control
        ctx.access = self.access.check(request)
        if ctx.access.matched_rule:
            ctx.matched_rule = ctx.access.matched_rule
        if not ctx.access.allowed:
            ctx.deny("access_control", ctx.access.reason or "Access denied", ctx.access.matched_rule)
            return self._finish(ctx)
        if ctx.access.would_deny:
            ctx.reasons.append(f"monitor: {ctx.access.reason}")

        # Step 3: detectors and behavior checks
        self._run_detectors(ctx)
        if self.config.anomaly_detection:
            ctx.add_threats(self.reputation.analyze_behavior(request, previous))
        self._check_automation(ctx)

        # Step 4: rate limit
        if self.config.rate_limiting.enabled:
            check = self.reputation.check_rate(request.ip)
            if check.exceeded:
                ctx.add_threats([self.reputation.rate_limit_threat(request.ip, check)])

        # Step 5: protected endpoint overlay
        rule = self.access.protection_rule(request)
        if rule is not None:
            ctx.protection_rule = rule
            ctx.matched_rule = rule.label
            if rule.rate_limit is not None:
                limit = RateLimit(rule.rate_limit.max_requests, rule.rate_limit.window_ms)
                check = self.reputation.check_rate(request.ip, limit, key=f"rule:{rule.label}")
                if check.exceeded:
                    ctx.add_threats([self.reputation.rate_limit_threat(request.ip, check)])
            reason = self.access.check_protection(rule, request, ctx.threats)
            if reason and self.monitor_only:
                ctx.reasons.append(f"monitor: {reason}")
            elif reason:
                ctx.deny("protected_endpoint", reason, rule.label)
                threshold = Severity(rule.max_threat_level) if rule.max_threat_level else None
                self._mark_blocked(ctx, lambda t: threshold is not None and t.severity.at_least(threshold))

        # Step 6: enforcement
        if self.config.block_mode and not self.monitor_only:
            self._enforce(ctx)

        return self._finish(ctx)

    def _run_detectors(self, ctx: EvaluationContext):
        fragments = self.extractor.build_fragments(ctx.request)
        files = self.extractor.build_file_fragments(ctx.request)
        for detector in self.detectors:
            if detector.request_scoped:
                ctx.add_threats(detector.detect(self.extractor.request_fragment(ctx.request), ctx))
                continue
            for fragment in fragments:
                ctx.add_threats(detector.detect(fragment, ctx))
            if detector.handles_files:
                for fragment in files:
                    ctx.add_threats(detector.detect(fragment, ctx))

    def _check_automation(self, ctx: EvaluationContext):
        fingerprint = ctx.fingerprint
        if fingerprint is None or not self.config.request_fingerprinting.block_automated_traffic:
            return
        if fingerprint.recommended_action != "block":
            return
        ctx.add_threats([SecurityThreat(
            type=ThreatType.ANOMALOUS_BEHAVIOR,
            severity=Severity.HIGH,
            confidence=AUTOMATED_TRAFFIC_CONFIDENCE,
            description=f"Automated traffic detected (bot score {fingerprint.bot_score})",
            payload=fingerprint.user_agent or None,
            metadata={
                "ip": ctx.ip,
                "bot_score": fingerprint.bot_score,
                "fingerprint_id": fingerprint.fingerprint_id,
                "signature": fingerprint.matched_signature,
                "check": "automated_traffic",
            },
        )])

    def effective_threshold(self, ctx: EvaluationContext) -> Severity:
        """Per-rule max threat level, or the global default"""
        rule = ctx.protection_rule
        if rule is not None and rule.max_threat_level:
            return Severity(rule.max_threat_level)
        return self.block_threshold

    def _enforce(self, ctx: EvaluationContext):
        """Deny on findings at or above the threshold, and on rate limit breaches"""
        threshold = self.effective_threshold(ctx)
        offending = [t for t in ctx.threats if t.severity.at_least(threshold)]
        rate_limited = [t for t in ctx.threats if t.type == ThreatType.RATE_LIMIT_EXCEEDED]

        if offending:
            worst = max(offending, key=lambda t: (t.severity.rank, t.confidence))
            ctx.deny("threat_detection", f"{worst.type.value}: {worst.description}")
        if rate_limited:
            ctx.deny("rate_limit", rate_limited[0].description)
        if offending or rate_limited:
            self._mark_blocked(ctx, lambda t: t.severity.at_least(threshold) or t.type == ThreatType.RATE_LIMIT_EXCEEDED)

    def _mark_blocked(self, ctx: EvaluationContext, predicate: Callable[[SecurityThreat], bool]):
        ctx.threats = [t.mark_blocked() if predicate(t) else t for t in ctx.threats]

    def _finish(self, ctx: EvaluationContext) -> Decision:
        """Step 7: update reputation, statistics and logs"""
        request = ctx.request
        self.reputation.record_activity(request.ip, ctx.threats)

        decision = Decision(
            allowed=not ctx.denied,
            threats=ctx.threats,
            blocked_by=ctx.blocked_by,
            matched_rule=ctx.matched_rule,
            reasons=ctx.reasons,
            fingerprint=ctx.fingerprint,
        )

        with self.lock:
            self.stats.total_requests += 1
            if decision.allowed:
                self.stats.allowed_count += 1
            else:
                self.stats.blocked_count += 1
        self.metrics.record_decision(request.ip, decision, ctx.elapsed_ms())

        for threat in decision.threats:
            self.logger.warning(
                f"Threat detected: {threat.type.value} ({threat.severity.value}, confidence {threat.confidence}) "
                f"from {request.ip} on {request.method} {request.path}: {threat.description}"
            )
        if not decision.allowed:
            self.logger.warning(
                f"Request BLOCKED: {request.method} {request.path} from {request.ip} "
                f"by {decision.blocked_by} - {'; '.join(decision.reasons)}"
            )
        return decision

    def get_stats(self) -> Dict[str, object]:
        """Aggregate counters"""
        metrics = self.metrics.get_metrics()
        with self.lock:
            return {
                "total_requests": self.stats.total_requests,
                "blocked_count": self.stats.blocked_count,
                "allowed_count": self.stats.allowed_count,
                "unique_fingerprints": metrics.fingerprints_seen,
                "blocked_ips": len(self.reputation.blocked_ips()),
                "tracked_ips": len(self.reputation),
                "threats_by_type": metrics.threats_by_type,
                "uptime_seconds": int((datetime.now() - self.stats.start_time).total_seconds()),
            }

    def get_analytics(self) -> Dict[str, object]:
        """Detailed metrics for dashboards"""
        metrics = self.metrics.get_metrics()
        return {
            "total_requests": metrics.total_requests,
            "blocked_requests": metrics.blocked_requests,
            "allowed_requests": metrics.allowed_requests,
            "threats_detected": metrics.threats_detected,
            "threats_blocked": metrics.threats_blocked,
            "top_attack_types": self.metrics.top_attack_types(),
            "top_attacking_ips": [{"ip": ip, "count": count} for ip, count in metrics.top_attacking_ips.items()],
            "requests_by_hour": metrics.requests_by_hour,
            "average_evaluation_ms": round(metrics.average_evaluation_ms, 3),
            "last_updated": metrics.last_updated.isoformat(),
        }
