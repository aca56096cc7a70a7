"""
RASP guard - runtime threat detection and request decision engine
"""

from .config import GuardConfig
from .errors import ConfigurationError, DetectorInternalError, GuardError, ParseFailure
from .fuzzing.engine import FuzzTarget
from .guard import Guard
from .models import (
    Decision,
    FuzzingResult,
    RequestFingerprint,
    RequestInfo,
    SecurityThreat,
    Severity,
    ThreatType,
    UploadedFile,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "Decision",
    "DetectorInternalError",
    "FuzzTarget",
    "FuzzingResult",
    "Guard",
    "GuardConfig",
    "GuardError",
    "ParseFailure",
    "RequestFingerprint",
    "RequestInfo",
    "SecurityThreat",
    "Severity",
    "ThreatType",
    "UploadedFile",
]
