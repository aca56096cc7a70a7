"""
Guard - public entry point of the RASP engine
"""

import logging
import time
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from .config import GuardConfig
from .logger import setup_logger
from .models import Decision, FuzzingResult, RequestInfo, SecurityThreat, ThreatType, UploadedFile
from .fuzzing.engine import FuzzingEngine, FuzzTarget
from .security_modules.advanced_detector import AdvancedDetector
from .security_modules.injection_detector import InjectionDetector
from .security_modules.state_store import PeriodicSweeper
from .security_modules.threat_detector import Fragment
from .security_modules.waf_engine import DecisionEngine
from .security_modules.xss_detector import XSSDetector
from .validation import VALIDATION_KINDS, ValidationResult, Validator, threat_types_for


BLOCK_MESSAGE = "Request blocked by security policy"


class Guard:
    """Evaluate requests and expose the helper operations"""

    def __init__(self, config: Union[GuardConfig, Mapping[str, Any], None] = None,
                 clock: Callable[[], float] = time.time):
        if not isinstance(config, GuardConfig):
            config = GuardConfig.from_mapping(dict(config or {}))
        self.config = config
        setup_logger(config.logging)
        self.logger = logging.getLogger(__name__)

        self.engine = DecisionEngine(config, clock=clock)
        rule_sets = self.engine.rule_sets
        # Helpers work even when the matching protection is switched off for requests
        self.injection = self.engine.detector("injection") or InjectionDetector(rule_sets)
        self.advanced = self.engine.detector("advanced") or AdvancedDetector(
            config.graphql_max_depth, config.max_upload_size, clock=clock
        )
        self.xss = self.engine.detector("xss") or XSSDetector(rule_sets[ThreatType.XSS])
        self.fuzzer = FuzzingEngine(config.fuzzing, injection=self.injection, xss=self.xss)

        self.sweeper: Optional[PeriodicSweeper] = None
        if config.sweep_interval_seconds:
            self.sweeper = PeriodicSweeper(
                config.sweep_interval_seconds,
                [self.engine.reputation.sweep, self.engine.csrf_store.sweep, self.engine.metrics.prune],
            ).start()

        self.logger.info(
            f"Guard initialized (block_mode={config.block_mode}, access_control={config.access_control.mode}, "
            f"detectors={[d.name for d in self.engine.detectors]})"
        )

    @classmethod
    def quick_protect(cls, trusted_origins: Iterable[str] = (), **overrides: Any) -> "Guard":
        """Block-mode guard with every protection on"""
        data: Dict[str, Any] = {"block_mode": True, "trusted_origins": list(trusted_origins)}
        data.update(overrides)
        return cls(data)

    # Requests

    def evaluate(self, request: RequestInfo) -> Decision:
        return self.engine.evaluate(request)

    def analyze(self, method: str = "GET", path: str = "/", headers: Optional[Mapping[str, Any]] = None,
                query: Optional[Mapping[str, Any]] = None, body: Any = None, ip: str = "unknown",
                session_id: Optional[str] = None, files: Optional[List[UploadedFile]] = None) -> Decision:
        """Evaluate a request given as keyword arguments"""
        request = RequestInfo(
            method=method,
            path=path,
            headers=dict(headers or {}),
            query=dict(query or {}),
            body=body,
            ip=ip,
            session_id=session_id,
            files=list(files or []),
        )
        return self.evaluate(request)

    @property
    def block_message(self) -> str:
        if self.config.custom_block_message:
            return f"{BLOCK_MESSAGE}. {self.config.custom_block_message}"
        return BLOCK_MESSAGE

    # Input helpers

    def scan(self, value: Any, types: Optional[FrozenSet[ThreatType]] = None) -> List[SecurityThreat]:
        """Run the input detectors over a standalone value"""
        fragment = Fragment(value, "input", "")
        threats: List[SecurityThreat] = []
        for detector in (self.injection, self.advanced, self.xss):
            threats.extend(detector.detect(fragment))
        if types is not None:
            threats = [t for t in threats if t.type in types]
        return threats

    def is_safe(self, value: Any, context: Optional[str] = None) -> bool:
        """True when no detector reports anything for value; unrecognised labels scan every type"""
        kinds = [context] if context in VALIDATION_KINDS else []
        return not self.scan(value, threat_types_for(kinds))

    def sanitize_for(self, value: Any, context: str = "html") -> str:
        return self.xss.sanitize(value, context)

    def sanitize(self, value: Any) -> str:
        return self.xss.sanitize(value, "html")

    def validate(self, value: Any) -> Validator:
        return Validator(value=value, scanner=self.scan, sanitizer=self.sanitize)

    def validate_and_sanitize(self, value: Any) -> ValidationResult:
        return self.validate(value).against(["all"]).sanitize().result()

    # Reputation

    def get_ip_reputation(self, ip: str) -> int:
        return self.engine.reputation.get_reputation_score(ip)

    def set_ip_blocked(self, ip: str, blocked: bool = True):
        self.engine.reputation.set_ip_blocked(ip, blocked)

    def is_ip_blocked(self, ip: str) -> bool:
        return self.engine.reputation.is_blocked(ip)

    def clear_history(self, ip: Optional[str] = None):
        self.engine.reputation.clear_history(ip)

    # CSRF

    def generate_csrf_token(self, session_id: str) -> str:
        return self.engine.csrf_store.generate(session_id)

    def validate_csrf_token(self, session_id: str, token: str, one_time: Optional[bool] = None) -> bool:
        if one_time is None:
            one_time = self.config.csrf_one_time_tokens
        return self.engine.csrf_store.validate(session_id, token, one_time)

    def revoke_csrf_token(self, session_id: str) -> bool:
        return self.engine.csrf_store.revoke(session_id)

    def get_csrf_token_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.engine.csrf_store.get_token_info(session_id)

    # Reporting

    def get_stats(self) -> Dict[str, Any]:
        return self.engine.get_stats()

    def get_analytics(self) -> Dict[str, Any]:
        return self.engine.get_analytics()

    def fuzz(self, target: Union[FuzzTarget, Mapping[str, Any]]) -> FuzzingResult:
        if not isinstance(target, FuzzTarget):
            target = FuzzTarget.model_validate(dict(target))
        return self.fuzzer.fuzz(target)

    def close(self):
        """Stop the background sweeper, if any"""
        if self.sweeper is not None:
            self.sweeper.stop(timeout=1.0)
            self.sweeper = None

    def __enter__(self) -> "Guard":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
