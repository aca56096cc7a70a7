"""
Bot Detection Module
"""

import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class BotSignature:
    """Automation signature definition"""
    name: str
    pattern: str
    compiled: Optional[re.Pattern] = None


BROWSER_TOKENS = re.compile(r"Mozilla/|Chrome/|Safari/|Firefox/|Edg/|Edge/|Opera/|OPR/")


class BotDetector:
    """Match user agents against known automation signatures"""

    def __init__(self, extra_signatures: Optional[List[BotSignature]] = None):
        self.signatures: List[BotSignature] = []
        self._load_default_signatures()
        for sig in extra_signatures or []:
            self.add_signature(sig)

    def _load_default_signatures(self):
        """Load default bot signatures, most specific first"""
        signatures = [
            BotSignature("SQLMap", r"sqlmap"),
            BotSignature("Nikto", r"nikto"),
            BotSignature("Nmap", r"nmap"),
            BotSignature("Nessus", r"nessus"),
            BotSignature("Burp", r"burp"),
            BotSignature("ZAP", r"\bzap\b|owasp"),
            BotSignature("Scanner", r"scanner"),
            BotSignature("Headless", r"headless|phantom"),
            BotSignature("Selenium", r"selenium|webdriver"),
            BotSignature("Puppeteer", r"puppeteer"),
            BotSignature("Playwright", r"playwright"),
            BotSignature("Python", r"python-requests|python-urllib|aiohttp|httpx"),
            BotSignature("Curl", r"curl/|\bcurl\b"),
            BotSignature("Wget", r"wget"),
            BotSignature("Postman", r"postman"),
            BotSignature("Insomnia", r"insomnia"),
            BotSignature("Go", r"go-http-client"),
            BotSignature("Java", r"\bjava\b|okhttp|apache-httpclient"),
            BotSignature("Googlebot", r"googlebot"),
            BotSignature("Bingbot", r"bingbot"),
            BotSignature("FacebookBot", r"facebookexternalhit"),
            BotSignature("TwitterBot", r"twitterbot"),
            BotSignature("Crawler", r"bot\b|crawler|spider|scraper"),
        ]

        for sig in signatures:
            self.add_signature(sig)

    def add_signature(self, sig: BotSignature):
        """Compile and register a signature; invalid patterns raise re.error"""
        sig.compiled = re.compile(sig.pattern, re.IGNORECASE)
        self.signatures.append(sig)

    def match(self, user_agent: str) -> Optional[BotSignature]:
        """First signature matching the user agent"""
        if not user_agent:
            return None
        for sig in self.signatures:
            if sig.compiled.search(user_agent):
                return sig
        return None

    def is_browser(self, user_agent: str) -> bool:
        """Check for a known browser token"""
        return bool(user_agent) and BROWSER_TOKENS.search(user_agent) is not None
