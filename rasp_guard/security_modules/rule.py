"""
Weighted pattern rule definitions
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..errors import ConfigurationError
from ..models import ThreatType


@dataclass
class PatternRule:
    """Pattern rule contributing a weight to a threat class"""
    id: int
    pattern: str
    message: str
    weight: int
    threat_type: ThreatType
    flags: int = re.IGNORECASE
    compiled: Optional[re.Pattern] = None

    def compile(self) -> "PatternRule":
        """Compile the regex pattern"""
        try:
            self.compiled = re.compile(self.pattern, self.flags)
        except re.error as e:
            raise ConfigurationError(f"Rule {self.id} has an invalid pattern: {e}") from e
        return self

    def match(self, data: str) -> bool:
        """True when the compiled pattern occurs in data"""
        return self.compiled is not None and self.compiled.search(data) is not None
