"""
Chained input validation

    guard.validate(value).against(["sql", "xss"]).sanitize().result()

Every step returns a new Validator; nothing is evaluated until result().
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .models import SecurityThreat, ThreatType


VALIDATION_KINDS: Dict[str, Tuple[ThreatType, ...]] = {
    "sql": (ThreatType.SQL_INJECTION,),
    "nosql": (ThreatType.NOSQL_INJECTION,),
    "xss": (ThreatType.XSS,),
    "command": (ThreatType.COMMAND_INJECTION,),
    "path": (ThreatType.PATH_TRAVERSAL,),
    "xxe": (ThreatType.XXE,),
    "ssrf": (ThreatType.SSRF,),
    "ldap": (ThreatType.LDAP_INJECTION,),
    "template": (ThreatType.TEMPLATE_INJECTION,),
    "all": (),
}

Scanner = Callable[[Any, Optional[FrozenSet[ThreatType]]], List[SecurityThreat]]


def threat_types_for(kinds: Iterable[str]) -> Optional[FrozenSet[ThreatType]]:
    """Threat types covered by kinds; None means every type"""
    selected = set()
    for kind in kinds:
        if kind not in VALIDATION_KINDS:
            raise ValueError(f"Unknown validation kind: {kind}")
        if kind == "all":
            return None
        selected.update(VALIDATION_KINDS[kind])
    return frozenset(selected) if selected else None


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation chain"""
    safe: bool
    input: Any
    threats: Tuple[SecurityThreat, ...] = ()
    sanitized: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"safe": self.safe, "input": self.input, "threats": [t.to_dict() for t in self.threats]}
        if self.sanitized is not None:
            data["sanitized"] = self.sanitized
        return data


@dataclass(frozen=True)
class Validator:
    """Immutable validation builder"""
    value: Any
    scanner: Scanner
    sanitizer: Callable[[Any], str]
    kinds: Tuple[str, ...] = ()
    sanitize_output: bool = False

    def against(self, kinds: Iterable[str]) -> "Validator":
        """Restrict the check to the given kinds"""
        if isinstance(kinds, str):
            kinds = [kinds]
        kinds = tuple(kinds)
        threat_types_for(kinds)
        return replace(self, kinds=self.kinds + kinds)

    def sanitize(self) -> "Validator":
        """Also return an HTML-sanitized copy of the input"""
        return replace(self, sanitize_output=True)

    def result(self) -> ValidationResult:
        threats = self.scanner(self.value, threat_types_for(self.kinds))
        return ValidationResult(
            safe=not threats,
            input=self.value,
            threats=tuple(threats),
            sanitized=self.sanitizer(self.value) if self.sanitize_output else None,
        )
