"""
CSRF (Cross-Site Request Forgery) Protection Module
"""

import hmac
import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, Optional
from urllib.parse import urlparse

from ..models import SecurityThreat, ThreatType, excerpt
from .state_store import ShardedStore
from .threat_detector import Fragment, ThreatDetector


CSRF_CONFIDENCE = 80
TOKEN_HEADERS = ("x-csrf-token", "x-xsrf-token", "csrf-token")
TOKEN_FIELDS = ("csrf_token", "_csrf", "_token", "csrfToken")


@dataclass(frozen=True)
class CSRFTokenRecord:
    """Stored token for one session"""
    token: str
    issued_at: float
    expires_at: float
    consumed: bool = False

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CSRFTokenStore:
    """CSRF token issuance and validation, one token per session"""

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.time,
                 store: Optional[ShardedStore] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.store: ShardedStore[CSRFTokenRecord] = store or ShardedStore()
        self.logger = logging.getLogger(__name__)

    def generate(self, session_id: str) -> str:
        """Issue a fresh token for a session, replacing any previous one"""
        token = secrets.token_hex(32)
        now = self.clock()
        self.store.set(session_id, CSRFTokenRecord(token, now, now + self.ttl_seconds))
        return token

    def validate(self, session_id: str, token: Optional[str], one_time: bool = False) -> bool:
        """Validate a token in constant time, consuming it when one_time is set"""
        if not session_id or not token:
            return False
        now = self.clock()

        def check(record: Optional[CSRFTokenRecord]):
            if record is None:
                return None, False
            if record.expired(now):
                return None, False
            if record.consumed:
                return record, False
            if not hmac.compare_digest(record.token.encode(), token.encode()):
                return record, False
            if one_time:
                return replace(record, consumed=True), True
            return record, True

        valid = self.store.compute(session_id, check)
        if not valid:
            self.logger.debug(f"CSRF token rejected for session {session_id}")
        return valid

    def revoke(self, session_id: str) -> bool:
        """Delete the token for a session"""
        return self.store.delete(session_id)

    def has_active_token(self, session_id: str) -> bool:
        record = self.store.get(session_id)
        return record is not None and not record.expired(self.clock()) and not record.consumed

    def get_token_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Token metadata without touching stored state"""
        record = self.store.get(session_id)
        if record is None:
            return None
        now = self.clock()
        return {
            "issued_at": record.issued_at,
            "expires_at": record.expires_at,
            "remaining_ttl": max(0.0, record.expires_at - now),
            "expired": record.expired(now),
            "consumed": record.consumed,
        }

    def sweep(self) -> int:
        """Drop expired tokens"""
        now = self.clock()
        return self.store.sweep(lambda _, record: record.expired(now))


class CSRFDetector(ThreatDetector):
    """Origin / Referer / token based CSRF check for state-changing requests"""

    name = "csrf"
    request_scoped = True

    PROTECTED_METHODS = {"POST", "PUT", "DELETE", "PATCH"}

    def __init__(self, token_store: CSRFTokenStore, trusted_origins=(), one_time_tokens: bool = False):
        super().__init__()
        self.token_store = token_store
        self.trusted_origins = {origin.rstrip("/").lower() for origin in trusted_origins}
        self.one_time_tokens = one_time_tokens

    def add_trusted_origin(self, origin: str):
        """Add a trusted origin for CSRF validation"""
        self.trusted_origins.add(origin.rstrip("/").lower())

    def _detect(self, fragment: Fragment, context: Optional[Any]) -> Iterator[SecurityThreat]:
        request = fragment.value
        if request.method not in self.PROTECTED_METHODS:
            return

        headers = request.headers
        host = headers.get("host", "").lower()
        origin_state = self._origin_state(headers.get("origin"), host)
        referer_state = self._origin_state(headers.get("referer"), host)

        # Any trusted header is sufficient
        if "trusted" in (origin_state, referer_state):
            return

        token = self._find_token(request)
        if token and self.token_store.validate(request.session_id or "", token, self.one_time_tokens):
            return

        has_session_token = bool(request.session_id) and self.token_store.has_active_token(request.session_id)
        if "untrusted" not in (origin_state, referer_state) and not has_session_token and not token:
            # Non-browser client: no origin information and no token issued
            return

        if "untrusted" in (origin_state, referer_state):
            reason = "Untrusted origin" if origin_state == "untrusted" else "Untrusted referer"
        else:
            reason = "Invalid or missing token"

        yield SecurityThreat(
            type=ThreatType.CSRF,
            confidence=CSRF_CONFIDENCE,
            description=f"CSRF attack detected: {reason}",
            payload=excerpt(headers.get("origin") or headers.get("referer") or ""),
            metadata={
                "location": "request",
                "method": request.method,
                "origin": origin_state,
                "referer": referer_state,
                "has_token": bool(token),
            },
        )

    def _origin_state(self, value: Optional[str], host: str) -> str:
        """trusted, untrusted or absent; an empty allowlist trusts any well-formed origin"""
        if not value:
            return "absent"
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            return "untrusted"
        if not self.trusted_origins:
            return "trusted"
        origin = f"{parsed.scheme}://{parsed.netloc}".lower()
        if origin in self.trusted_origins:
            return "trusted"
        if host and parsed.netloc.lower() == host:
            return "trusted"
        return "untrusted"

    def _find_token(self, request) -> Optional[str]:
        """Get the CSRF token from headers or body fields"""
        for header in TOKEN_HEADERS:
            if request.headers.get(header):
                return request.headers[header]
        if isinstance(request.body, dict):
            for field in TOKEN_FIELDS:
                value = request.body.get(field)
                if isinstance(value, str) and value:
                    return value
        return None
