"""
Injection Detection module

SQL, NoSQL, command, path traversal, SSRF and XXE detection over normalized input.
"""

import re
from typing import Any, Dict, Iterator, List, Optional

from ..models import SecurityThreat, ThreatType, excerpt
from . import normalizer
from .rule import PatternRule
from .rule_loader import RuleLoader
from .ssrf_protection import SSRFAnalyzer
from .threat_detector import REPORT_THRESHOLD, Fragment, InputItem, ThreatDetector, extract_inputs, score_rules


INJECTION_TYPES = (
    ThreatType.SQL_INJECTION,
    ThreatType.NOSQL_INJECTION,
    ThreatType.COMMAND_INJECTION,
    ThreatType.PATH_TRAVERSAL,
    ThreatType.XXE,
)

MONGO_OPERATORS = {
    "$where", "$ne", "$gt", "$gte", "$lt", "$lte", "$regex", "$exists", "$in", "$nin",
    "$or", "$and", "$not", "$nor", "$expr", "$elemMatch", "$eq", "$function", "$accumulator",
}

OPERATOR_KEY_CONFIDENCE = 70
UNKNOWN_OPERATOR_KEY_CONFIDENCE = 40
PROTOTYPE_POLLUTION_CONFIDENCE = 80

_PROTOTYPE_KEYS = re.compile(r"^prototype$|__proto__|constructor\.prototype|constructor\[")
_PROTOTYPE_VALUE = re.compile(r"[\[\"']__proto__[\]\"']|\bconstructor\s*[\[.]\s*[\"']?prototype\b")


class InjectionDetector(ThreatDetector):
    """Detect injection attacks in request input"""

    name = "injection"

    def __init__(self, rule_sets: Optional[Dict[ThreatType, List[PatternRule]]] = None):
        super().__init__()
        rule_sets = rule_sets or RuleLoader().load_default_rules()
        self.rule_sets = {t: rule_sets[t] for t in INJECTION_TYPES if t in rule_sets}
        self.ssrf = SSRFAnalyzer()

    def _detect(self, fragment: Fragment, context: Optional[Any]) -> Iterator[SecurityThreat]:
        for item in extract_inputs(fragment.value):
            if item.is_key:
                yield from self._check_key(item, fragment)
                continue
            yield from self._check_value(item, fragment)

    def _check_key(self, item: InputItem, fragment: Fragment) -> Iterator[SecurityThreat]:
        """Structural checks on object keys"""
        key = item.value
        field = ".".join(part for part in (fragment.field, item.field) if part)

        if key.startswith("$"):
            known = key in MONGO_OPERATORS
            yield SecurityThreat(
                type=ThreatType.NOSQL_INJECTION,
                confidence=OPERATOR_KEY_CONFIDENCE if known else UNKNOWN_OPERATOR_KEY_CONFIDENCE,
                description=f"NoSQL Injection - operator {key} in key position",
                payload=excerpt(key),
                metadata={"location": fragment.location, "field": field, "operator": key},
            )

        if _PROTOTYPE_KEYS.search(key):
            yield self._prototype_pollution(key, field, fragment)

    def _check_value(self, item: InputItem, fragment: Fragment) -> Iterator[SecurityThreat]:
        """Weighted rule scoring on one string value"""
        forms = normalizer.variants(item.value)

        for threat_type, rules in self.rule_sets.items():
            confidence, matched = score_rules(forms, rules)
            if matched and confidence >= REPORT_THRESHOLD:
                yield self.rule_threat(threat_type, confidence, matched, item, fragment)

        if _PROTOTYPE_VALUE.search(forms[0]):
            field = ".".join(part for part in (fragment.field, item.field) if part)
            yield self._prototype_pollution(item.value, field, fragment)

        # Referer and Origin legitimately carry URLs
        if fragment.location != "header":
            yield from self._check_ssrf(forms[0], item, fragment)

    def _prototype_pollution(self, value: str, field: str, fragment: Fragment) -> SecurityThreat:
        return SecurityThreat(
            type=ThreatType.ANOMALOUS_BEHAVIOR,
            confidence=PROTOTYPE_POLLUTION_CONFIDENCE,
            description="Prototype pollution attempt",
            payload=excerpt(value),
            metadata={"location": fragment.location, "field": field, "attack": "prototype_pollution"},
        )

    def _check_ssrf(self, decoded: str, item: InputItem, fragment: Fragment) -> Iterator[SecurityThreat]:
        """One SSRF finding per value, scored by the riskiest URL"""
        results = self.ssrf.analyze(decoded)
        if not results:
            return
        worst = max(results, key=lambda r: r.confidence)
        field = ".".join(part for part in (fragment.field, item.field) if part)
        yield SecurityThreat(
            type=ThreatType.SSRF,
            confidence=worst.confidence,
            description=worst.message,
            payload=excerpt(item.value),
            metadata={
                "location": fragment.location,
                "field": field,
                "attack_type": worst.attack_type,
                "targets": [r.target for r in results],
            },
        )
