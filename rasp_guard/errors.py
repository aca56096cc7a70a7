"""
Exception types raised by the RASP guard
"""


class GuardError(Exception):
    """Base class for all guard errors"""


class ConfigurationError(GuardError):
    """Invalid configuration detected while building the guard"""


class ParseFailure(GuardError):
    """A detector could not parse a fragment (JWT, GraphQL document, body)"""

    def __init__(self, message: str, kind: str = "generic"):
        super().__init__(message)
        self.kind = kind


class DetectorInternalError(GuardError):
    """Unexpected failure inside a detector"""

    def __init__(self, detector: str, cause: BaseException):
        super().__init__(f"{detector} failed: {cause!r}")
        self.detector = detector
        self.cause = cause
