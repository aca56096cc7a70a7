"""
Metrics Collector Tests - counters and bounded tracking tables

Run with: pytest tests/test_metrics_collector.py -v
"""

from rasp_guard import Guard, ThreatType
from rasp_guard.models import Decision, RequestFingerprint, SecurityThreat
from rasp_guard.security_modules.metrics_collector import MetricsCollector


def decision_with(fingerprint_id=None, threats=0):
    fingerprint = RequestFingerprint(fingerprint_id=fingerprint_id) if fingerprint_id else None
    found = [SecurityThreat(type=ThreatType.XSS, confidence=70, description="XSS") for _ in range(threats)]
    return Decision(allowed=True, threats=found, fingerprint=fingerprint)


# =============================================================================
# BOUNDED TABLES
# =============================================================================

class TestBoundedTables:
    """Attacker-controlled keys never grow the tables without limit."""

    def test_fingerprints_capped(self, clock):
        metrics = MetricsCollector(clock=clock, max_fingerprints=50)
        for i in range(500):
            metrics.record_decision("203.0.113.10", decision_with(f"fp-{i}"))
        assert metrics.get_metrics().fingerprints_seen == 50
        assert "fp-499" in metrics.fingerprints
        assert "fp-0" not in metrics.fingerprints

    def test_repeat_fingerprint_refreshed(self, clock):
        metrics = MetricsCollector(clock=clock, max_fingerprints=2)
        metrics.record_decision("192.0.2.1", decision_with("a"))
        metrics.record_decision("192.0.2.1", decision_with("b"))
        metrics.record_decision("192.0.2.1", decision_with("a"))
        metrics.record_decision("192.0.2.1", decision_with("c"))
        assert list(metrics.fingerprints) == ["a", "c"]

    def test_attacking_ips_capped(self, clock):
        metrics = MetricsCollector(clock=clock, max_ips=100)
        for _ in range(5):
            metrics.record_decision("198.51.100.7", decision_with(threats=1))
        for i in range(1000):
            metrics.record_decision(f"10.0.{i // 256}.{i % 256}", decision_with(threats=1))
        assert len(metrics.attacking_ips) <= 100
        top = metrics.get_metrics().top_attacking_ips
        assert next(iter(top)) == "198.51.100.7"
        assert top["198.51.100.7"] == 5

    def test_prune_drops_stale_fingerprints(self, clock):
        metrics = MetricsCollector(clock=clock, fingerprint_ttl=3600)
        metrics.record_decision("192.0.2.1", decision_with("old"))
        clock.advance(3000)
        metrics.record_decision("192.0.2.1", decision_with("recent"))
        clock.advance(1000)
        assert metrics.prune() == 1
        assert list(metrics.fingerprints) == ["recent"]

    def test_threat_counts(self, clock):
        metrics = MetricsCollector(clock=clock)
        metrics.record_decision("192.0.2.1", decision_with(threats=3))
        snapshot = metrics.get_metrics()
        assert snapshot.threats_detected == 3
        assert snapshot.threats_by_type == {"xss": 3}
        assert snapshot.top_attacking_ips == {"192.0.2.1": 3}

    def test_reset(self, clock):
        metrics = MetricsCollector(clock=clock)
        metrics.record_decision("192.0.2.1", decision_with("a", threats=2))
        metrics.reset()
        snapshot = metrics.get_metrics()
        assert snapshot.total_requests == 0
        assert snapshot.fingerprints_seen == 0
        assert snapshot.top_attacking_ips == {}


# =============================================================================
# SWEEP WIRING
# =============================================================================

class TestSweepWiring:
    """The guard sweeps stores and metrics by default."""

    def test_default_guard_sweeps(self):
        with Guard({"logging": {"enabled": False}}) as g:
            assert g.sweeper is not None
            assert g.engine.metrics.prune in g.sweeper.callbacks
            assert g.engine.reputation.sweep in g.sweeper.callbacks

    def test_sweeper_disabled(self):
        with Guard({"logging": {"enabled": False}, "sweepIntervalSeconds": None}) as g:
            assert g.sweeper is None
