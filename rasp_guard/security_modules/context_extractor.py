"""
Request Context Extractor
"""

from typing import List

from ..models import RequestInfo
from .threat_detector import Fragment


SCANNED_HEADERS = (
    "user-agent",
    "referer",
    "cookie",
    "authorization",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-original-url",
    "x-rewrite-url",
)


class ContextExtractor:
    """Split a request into the fragments detectors scan"""

    def __init__(self, headers=SCANNED_HEADERS):
        self.headers = tuple(h.lower() for h in headers)

    def build_fragments(self, request: RequestInfo) -> List[Fragment]:
        """Path, query, body and selected headers, in that order"""
        fragments = [Fragment(request.path, "path", "path")]
        if request.query:
            fragments.append(Fragment(request.query, "query", ""))
        if request.body is not None and request.body != "":
            fragments.append(Fragment(request.body, "body", ""))
        for name in self.headers:
            value = request.headers.get(name)
            if value:
                fragments.append(Fragment(value, "header", name))
        return fragments

    def build_file_fragments(self, request: RequestInfo) -> List[Fragment]:
        return [Fragment(upload, "file", upload.filename) for upload in request.files]

    def request_fragment(self, request: RequestInfo) -> Fragment:
        """Whole-request fragment for request scoped detectors"""
        return Fragment(request, "request", "")
