"""
Client Fingerprint Generator module
"""

import hashlib
from typing import Mapping, Optional

from ..models import RequestFingerprint
from .bot_detection import BotDetector


SUSPICIOUS_HEADERS = ("x-scanner", "x-forwarded-host", "x-original-url", "x-rewrite-url")
FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding", "accept")

NO_USER_AGENT_SCORE = 40
AUTOMATION_SIGNATURE_SCORE = 60
MISSING_ACCEPT_LANGUAGE_SCORE = 15
MISSING_ACCEPT_ENCODING_SCORE = 15
SUSPICIOUS_HEADER_SCORE = 10
MISSING_ACCEPT_SCORE = 10
CONNECTION_CLOSE_SCORE = 5
NON_BROWSER_SCORE = 20
BOT_THRESHOLD = 50


class FingerprintGenerator:
    """Score bot likelihood and derive a stable fingerprint from headers"""

    def __init__(self, bot_detector: Optional[BotDetector] = None):
        self.bot_detector = bot_detector or BotDetector()

    def generate_hash(self, headers: Mapping[str, str]) -> str:
        """Hash over user-agent, accept-language, accept-encoding and accept"""
        data = "|".join(headers.get(name, "") for name in FINGERPRINT_HEADERS)
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def analyze(self, headers: Mapping[str, str]) -> RequestFingerprint:
        """Build a RequestFingerprint from lower-cased request headers"""
        headers = {str(k).lower(): v for k, v in headers.items() if v is not None}
        user_agent = headers.get("user-agent", "")
        accept_language = headers.get("accept-language")
        accept_encoding = headers.get("accept-encoding")
        connection = headers.get("connection")

        score = 0
        signature = None
        if not user_agent:
            score += NO_USER_AGENT_SCORE
        else:
            signature = self.bot_detector.match(user_agent)
            if signature:
                score += AUTOMATION_SIGNATURE_SCORE
            if not self.bot_detector.is_browser(user_agent):
                score += NON_BROWSER_SCORE

        if not accept_language:
            score += MISSING_ACCEPT_LANGUAGE_SCORE
        if not accept_encoding:
            score += MISSING_ACCEPT_ENCODING_SCORE
        score += SUSPICIOUS_HEADER_SCORE * sum(1 for name in SUSPICIOUS_HEADERS if headers.get(name))
        if not headers.get("accept"):
            score += MISSING_ACCEPT_SCORE
        if connection and connection.strip().lower() == "close":
            score += CONNECTION_CLOSE_SCORE

        score = max(0, min(100, score))
        return RequestFingerprint(
            user_agent=user_agent,
            accept_language=accept_language,
            accept_encoding=accept_encoding,
            connection=connection,
            is_bot=score >= BOT_THRESHOLD,
            bot_score=score,
            fingerprint_id=self.generate_hash(headers),
            matched_signature=signature.name if signature else None,
        )

    def generate_report(self, fingerprint: RequestFingerprint) -> str:
        """Human readable summary of a fingerprint"""
        risk = "HIGH" if fingerprint.bot_score >= 80 else "MEDIUM" if fingerprint.bot_score >= 50 else "LOW"
        lines = [
            "Request Fingerprint Analysis",
            f"Bot Score: {fingerprint.bot_score}/100",
            f"Risk Level: {risk}",
            f"Is Bot: {'Yes' if fingerprint.is_bot else 'No'}",
            f"Recommended Action: {fingerprint.recommended_action.upper()}",
            f"User Agent: {fingerprint.user_agent or 'N/A'}",
            f"Accept-Language: {fingerprint.accept_language or 'N/A'}",
            f"Accept-Encoding: {fingerprint.accept_encoding or 'N/A'}",
            f"Connection: {fingerprint.connection or 'N/A'}",
            f"Matched Signature: {fingerprint.matched_signature or 'N/A'}",
            f"Fingerprint ID: {fingerprint.fingerprint_id}",
        ]
        return "\n".join(lines)
