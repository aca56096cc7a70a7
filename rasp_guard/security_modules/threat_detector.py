"""
Threat Detection base
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..errors import DetectorInternalError, ParseFailure
from ..models import SecurityThreat, Severity, ThreatType, excerpt
from .rule import PatternRule


MAX_FLATTEN_DEPTH = 32
MAX_FLATTEN_ITEMS = 2000
REPORT_THRESHOLD = 30
PARSE_FAILURE_CONFIDENCE = 30


@dataclass(frozen=True)
class Fragment:
    """One piece of request input handed to a detector"""
    value: Any
    location: str = "input"
    field: str = ""

    @classmethod
    def wrap(cls, value: Any) -> "Fragment":
        if isinstance(value, Fragment):
            return value
        return cls(value=value)


@dataclass(frozen=True)
class InputItem:
    """Flattened leaf (or key) of a structured value"""
    field: str
    value: str
    is_key: bool = False


def extract_inputs(value: Any, prefix: str = "") -> List[InputItem]:
    """Flatten nested dicts and lists into string leaves, keys included"""
    items: List[InputItem] = []
    stack: List[Tuple[str, Any, int]] = [(prefix, value, 0)]

    while stack and len(items) < MAX_FLATTEN_ITEMS:
        path, current, depth = stack.pop()
        if depth > MAX_FLATTEN_DEPTH:
            continue
        if isinstance(current, dict):
            for key, child in reversed(list(current.items())):
                child_path = f"{path}.{key}" if path else str(key)
                items.append(InputItem(child_path, str(key), is_key=True))
                stack.append((child_path, child, depth + 1))
        elif isinstance(current, (list, tuple)):
            for index in reversed(range(len(current))):
                stack.append((f"{path}[{index}]", current[index], depth + 1))
        elif isinstance(current, (bytes, bytearray)):
            items.append(InputItem(path, bytes(current).decode("utf-8", errors="replace")))
        elif current is None or isinstance(current, bool):
            continue
        else:
            items.append(InputItem(path, str(current)))

    return items


def score_rules(forms: Sequence[str], rules: Iterable[PatternRule]) -> Tuple[int, List[PatternRule]]:
    """Sum weights of rules matching any normalized form, capped at 100"""
    matched = [rule for rule in rules if any(rule.match(form) for form in forms)]
    return min(100, sum(rule.weight for rule in matched)), matched


class ThreatDetector(ABC):
    """Base class: detect() never raises, failures become findings"""

    name = "detector"
    request_scoped = False
    handles_files = False

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def detect(self, fragment: Any, context: Optional[Any] = None) -> List[SecurityThreat]:
        """Run the detector on a fragment and return its findings"""
        fragment = Fragment.wrap(fragment)
        try:
            return list(self._detect(fragment, context))
        except ParseFailure as e:
            return [self.parse_failure_threat(e, fragment)]
        except Exception as e:
            error = DetectorInternalError(self.name, e)
            self.logger.error(f"Detector {self.name} failed on {fragment.location}.{fragment.field}: {error}", exc_info=True)
            return [SecurityThreat(
                type=ThreatType.ANOMALOUS_BEHAVIOR,
                severity=Severity.MEDIUM,
                confidence=50,
                description=f"Parsing anomaly in {self.name}",
                payload=excerpt(fragment.value),
                metadata={"detector": self.name, "location": fragment.location,
                          "field": fragment.field, "error": type(e).__name__},
            )]

    @abstractmethod
    def _detect(self, fragment: Fragment, context: Optional[Any]) -> Iterator[SecurityThreat]:
        """Yield findings for a fragment"""

    def parse_failure_threat(self, error: ParseFailure, fragment: Fragment) -> SecurityThreat:
        """Low confidence finding for input that could not be parsed"""
        return SecurityThreat(
            type=ThreatType.ANOMALOUS_BEHAVIOR,
            confidence=PARSE_FAILURE_CONFIDENCE,
            description=f"Malformed {error.kind} input: {error}",
            payload=excerpt(fragment.value),
            metadata={"detector": self.name, "location": fragment.location,
                      "field": fragment.field, "parse_failure": error.kind},
        )

    def rule_threat(self, threat_type: ThreatType, confidence: int, matched: List[PatternRule],
                    item: InputItem, fragment: Fragment, **metadata: Any) -> SecurityThreat:
        """Finding for a set of matched weighted rules"""
        field = ".".join(part for part in (fragment.field, item.field) if part)
        matched = sorted(matched, key=lambda rule: rule.weight, reverse=True)
        return SecurityThreat(
            type=threat_type,
            confidence=confidence,
            description=matched[0].message if len(matched) == 1 else f"{matched[0].message} (+{len(matched) - 1} more)",
            payload=excerpt(item.value),
            metadata={
                "location": fragment.location,
                "field": field,
                "rules": [rule.id for rule in matched],
                **metadata,
            },
        )
