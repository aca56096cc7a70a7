"""
Configuration module for the RASP guard
"""

import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError


ThreatLevel = Literal["low", "medium", "high", "critical"]

REGEX_PREFIX = "re:"


def compile_path_pattern(path: Any) -> Union[str, re.Pattern]:
    """Normalize an endpoint path: keep plain strings, compile regexes"""
    if isinstance(path, re.Pattern):
        return path
    if not isinstance(path, str):
        raise ConfigurationError(f"Endpoint path must be a string or regex, got {type(path).__name__}")
    if path.startswith(REGEX_PREFIX):
        try:
            return re.compile(path[len(REGEX_PREFIX):])
        except re.error as e:
            raise ConfigurationError(f"Invalid endpoint regex {path!r}: {e}") from e
    if not path:
        raise ConfigurationError("Endpoint path must not be empty")
    return path


class _Section(BaseModel):
    """Shared settings: camelCase aliases, snake_case names both accepted"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class EndpointRateLimit(_Section):
    """Per-endpoint rate limit override"""
    max_requests: int = Field(gt=0)
    window_ms: int = Field(gt=0)


class EndpointRule(_Section):
    """Access control rule for one endpoint pattern"""
    path: Any
    methods: Optional[List[str]] = None
    require_auth: bool = False
    max_threat_level: Optional[ThreatLevel] = None
    rate_limit: Optional[EndpointRateLimit] = None

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: Any) -> Union[str, re.Pattern]:
        return compile_path_pattern(value)

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [m.upper() for m in value]

    @property
    def label(self) -> str:
        """Printable form of the path matcher"""
        if isinstance(self.path, re.Pattern):
            return f"{REGEX_PREFIX}{self.path.pattern}"
        return self.path


class AccessControlConfig(_Section):
    """Endpoint access control settings"""
    mode: Literal["allowlist", "blocklist", "monitor"] = "blocklist"
    default_action: Optional[Literal["allow", "block"]] = None
    allowed_endpoints: List[EndpointRule] = Field(default_factory=list)
    protected_endpoints: List[EndpointRule] = Field(default_factory=list)
    blocked_endpoints: List[Any] = Field(default_factory=list)
    require_auth_header: str = "authorization"

    @field_validator("blocked_endpoints")
    @classmethod
    def _check_blocked(cls, value: List[Any]) -> List[Union[str, re.Pattern]]:
        return [compile_path_pattern(path) for path in value]

    @field_validator("require_auth_header")
    @classmethod
    def _lower_header(cls, value: str) -> str:
        return value.lower()

    @property
    def unmatched_action(self) -> str:
        """Action for requests matching no allowed endpoint"""
        if self.default_action:
            return self.default_action
        return "block" if self.mode == "allowlist" else "allow"


class RateLimitingConfig(_Section):
    """Per-IP rate limiting settings"""
    enabled: bool = True
    max_requests: int = Field(default=100, gt=0)
    window_ms: int = Field(default=60000, gt=0)
    dynamic_throttling: bool = False
    suspicious_ip_multiplier: float = Field(default=0.5, gt=0, le=1, alias="suspiciousIPMultiplier")
    retention_ms: int = Field(default=3_600_000, gt=0)


class FingerprintingConfig(_Section):
    """Request fingerprinting settings"""
    enabled: bool = True
    block_automated_traffic: bool = False


class FuzzingConfig(_Section):
    """Offline fuzzing settings"""
    enabled: bool = True
    max_payloads: int = Field(default=100, gt=0)
    timeout: int = Field(default=5000, gt=0)
    auth_bypass_tests: bool = True
    rate_limit_tests: bool = True
    graphql_introspection: bool = True
    custom_payloads: List[str] = Field(default_factory=list)


class LoggingConfig(_Section):
    """Logging settings"""
    enabled: bool = True
    level: Literal["debug", "info", "warn", "warning", "error"] = "info"
    log_file: Optional[str] = None


class GuardConfig(_Section):
    """Top-level guard configuration"""
    block_mode: bool = False
    injection_protection: bool = True
    xss_protection: bool = True
    csrf_protection: bool = True
    anomaly_detection: bool = True
    trusted_origins: List[str] = Field(default_factory=list)
    max_request_size: int = Field(default=10 * 1024 * 1024, gt=0)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    access_control: AccessControlConfig = Field(default_factory=AccessControlConfig)
    request_fingerprinting: FingerprintingConfig = Field(default_factory=FingerprintingConfig)
    fuzzing: FuzzingConfig = Field(default_factory=FuzzingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_block_threshold: ThreatLevel = "high"
    custom_block_message: Optional[str] = None
    csrf_token_ttl_seconds: int = Field(default=3600, gt=0)
    csrf_one_time_tokens: bool = False
    graphql_max_depth: int = Field(default=7, gt=0)
    max_upload_size: int = Field(default=10 * 1024 * 1024, gt=0)
    sweep_interval_seconds: Optional[float] = Field(default=60.0, gt=0)

    @field_validator("trusted_origins")
    @classmethod
    def _normalize_origins(cls, value: List[str]) -> List[str]:
        return [origin.rstrip("/").lower() for origin in value]

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]] = None) -> "GuardConfig":
        """Build a config from a plain mapping, failing fast on bad values"""
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
