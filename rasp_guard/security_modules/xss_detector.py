"""
XSS Detection and context-aware output sanitization
"""

import re
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

from markupsafe import escape

from ..models import SecurityThreat, ThreatType
from . import normalizer
from .rule import PatternRule
from .rule_loader import RuleLoader
from .threat_detector import REPORT_THRESHOLD, Fragment, ThreatDetector, extract_inputs, score_rules


SANITIZE_CONTEXTS = ("html", "attribute", "javascript", "css", "url")

_HTML_ENTITY = re.compile(r"&(?:#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")
_JS_ESCAPE = re.compile(r"\\x[0-9a-fA-F]{2}|\\u[0-9a-fA-F]{4}")
_JS_SAFE = re.compile(r"[A-Za-z0-9 ,._]")
_CSS_UNSAFE = re.compile(r"[^A-Za-z0-9 \-_#.,%]")
_URL_STRIP = re.compile(r"[\x00-\x20\x7f]")
_DANGEROUS_SCHEMES = ("javascript:", "vbscript:", "data:", "file:")
_URL_SAFE_CHARS = "/:?#[]@!$&*+,;=%-._~"


class XSSDetector(ThreatDetector):
    """Detect XSS payloads and sanitize output per context"""

    name = "xss"

    def __init__(self, rules: Optional[List[PatternRule]] = None):
        super().__init__()
        self.rules = rules or RuleLoader().load_default_rules()[ThreatType.XSS]

    def _detect(self, fragment: Fragment, context: Optional[Any]) -> Iterator[SecurityThreat]:
        for item in extract_inputs(fragment.value):
            if item.is_key:
                continue
            confidence, matched = score_rules(normalizer.variants(item.value), self.rules)
            if matched and confidence >= REPORT_THRESHOLD:
                yield self.rule_threat(ThreatType.XSS, confidence, matched, item, fragment)

    def sanitize(self, value: Any, context: str = "html") -> str:
        """Escape value for the given output context; applying twice is a no-op"""
        sanitizers = {
            "html": self._sanitize_html,
            "attribute": self._sanitize_attribute,
            "javascript": self._sanitize_javascript,
            "css": self._sanitize_css,
            "url": self._sanitize_url,
        }
        if context not in sanitizers:
            raise ValueError(f"Unknown sanitize context: {context}")
        text = value if isinstance(value, str) else str(value)
        return sanitizers[context](text)

    def _sanitize_html(self, text: str) -> str:
        return self._escape_outside_entities(text, {"/": "&#x2F;"})

    def _sanitize_attribute(self, text: str) -> str:
        return self._escape_outside_entities(text, {"/": "&#x2F;", "`": "&#x60;", "=": "&#x3D;"})

    def _escape_outside_entities(self, text: str, extra: Dict[str, str]) -> str:
        # Existing entities are kept so a second pass leaves the output unchanged
        parts = []
        last = 0
        for match in _HTML_ENTITY.finditer(text):
            parts.append(self._escape_segment(text[last:match.start()], extra))
            parts.append(match.group(0))
            last = match.end()
        parts.append(self._escape_segment(text[last:], extra))
        return "".join(parts)

    def _escape_segment(self, segment: str, extra: Dict[str, str]) -> str:
        escaped = str(escape(segment))
        for char, replacement in extra.items():
            escaped = escaped.replace(char, replacement)
        return escaped

    def _sanitize_javascript(self, text: str) -> str:
        parts = []
        last = 0
        for match in _JS_ESCAPE.finditer(text):
            parts.append(self._escape_js_segment(text[last:match.start()]))
            parts.append(match.group(0))
            last = match.end()
        parts.append(self._escape_js_segment(text[last:]))
        return "".join(parts)

    def _escape_js_segment(self, segment: str) -> str:
        out = []
        for char in segment:
            if _JS_SAFE.match(char):
                out.append(char)
            elif ord(char) < 0x100:
                out.append(f"\\x{ord(char):02x}")
            else:
                # UTF-16 code units, surrogate pairs for astral characters
                data = char.encode("utf-16-be")
                for i in range(0, len(data), 2):
                    out.append(f"\\u{int.from_bytes(data[i:i + 2], 'big'):04x}")
        return "".join(out)

    def _sanitize_css(self, text: str) -> str:
        return _CSS_UNSAFE.sub("", text)

    def _sanitize_url(self, text: str) -> str:
        target = _URL_STRIP.sub("", normalizer.decode(text)).lower()
        if target.startswith(_DANGEROUS_SCHEMES):
            return ""
        return quote(text, safe=_URL_SAFE_CHARS)
