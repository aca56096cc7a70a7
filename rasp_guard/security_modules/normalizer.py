"""
Input normalization pipeline

Repeatedly URL-decodes, HTML-entity-decodes and NFKC-folds a fragment until it
stops changing or the round cap is reached, then derives comment-stripped variants.
"""

import html
import re
import unicodedata
from typing import Tuple
from urllib.parse import unquote


MAX_DECODE_ROUNDS = 5
MAX_FRAGMENT_LENGTH = 64 * 1024

_JS_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")
_JS_HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
_INLINE_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\t\r\n\x0b\x0c]")


def _decode_once(value: str) -> str:
    value = unquote(value)
    value = html.unescape(value)
    value = _JS_UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)
    value = _JS_HEX_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)
    return unicodedata.normalize("NFKC", value)


def decode(value: str, max_rounds: int = MAX_DECODE_ROUNDS) -> str:
    """Decode until stable, at most max_rounds passes"""
    value = value[:MAX_FRAGMENT_LENGTH]
    for _ in range(max_rounds):
        decoded = _decode_once(value)
        if decoded == value:
            break
        value = decoded
    return value


def variants(value: str) -> Tuple[str, ...]:
    """Distinct normalized forms of a fragment that detectors should scan"""
    decoded = decode(value)
    spaced = _INLINE_COMMENT.sub(" ", decoded)
    compact = _CONTROL_CHARS.sub("", _INLINE_COMMENT.sub("", decoded))

    forms = [decoded]
    for form in (spaced, compact):
        if form not in forms:
            forms.append(form)
    return tuple(forms)
