"""
Sanic adapter - request parsing, block responses and guard middleware
"""

import logging
from typing import Any, Dict, List, Optional

from sanic import Request, Sanic, response
from sanic.exceptions import BadRequest

from ..guard import Guard
from ..health_monitor import HealthMonitor
from ..models import Decision, RequestInfo, UploadedFile


SESSION_COOKIES = ("session", "sessionid", "session_id", "sid")
UPLOAD_HEAD_BYTES = 1024


class RequestParser:
    """Build a RequestInfo from a Sanic request"""

    def parse(self, request: Request) -> RequestInfo:
        return RequestInfo(
            method=request.method,
            path=request.path,
            headers={key: value for key, value in request.headers.items()},
            query=self._flatten(request.args),
            body=self._get_body(request),
            ip=self._extract_client_ip(request),
            session_id=self._get_session_id(request),
            files=self._get_files(request),
        )

    def _flatten(self, params) -> Dict[str, Any]:
        """Single values stay scalars, repeated values become lists"""
        return {key: values[0] if len(values) == 1 else list(values) for key, values in params.items()}

    def _get_body(self, request: Request) -> Any:
        """JSON or form body as a structured value, raw text otherwise"""
        if not request.body:
            return None
        content_type = request.content_type or ""
        if "json" in content_type:
            try:
                return request.json
            except BadRequest:
                # Unparseable JSON is still scanned as text
                return request.body.decode("utf-8", errors="replace")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            return self._flatten(request.form)
        return request.body.decode("utf-8", errors="replace")

    def _get_files(self, request: Request) -> List[UploadedFile]:
        if not (request.content_type or "").startswith("multipart/form-data"):
            return []
        uploads = []
        for files in request.files.values():
            for item in files:
                uploads.append(UploadedFile(
                    filename=item.name or "",
                    content_type=item.type or "",
                    size=len(item.body),
                    head=item.body[:UPLOAD_HEAD_BYTES],
                ))
        return uploads

    def _get_session_id(self, request: Request) -> Optional[str]:
        if session := request.headers.get("X-Session-ID"):
            return session
        for name in SESSION_COOKIES:
            if session := request.cookies.get(name):
                return session
        return None

    def _extract_client_ip(self, request: Request) -> str:
        """Extract client IP from proxy headers or the peer address"""
        if ip := request.headers.get("X-Real-IP"):
            return ip.strip()

        if forwarded := request.headers.get("X-Forwarded-For"):
            return forwarded.split(",")[0].strip()

        return request.ip or "unknown"


class ResponseBuilder:
    """Build guard responses"""

    def blocked(self, decision: Decision, message: str):
        """403 for policy denials, 429 for rate limiting"""
        status = 429 if decision.blocked_by == "rate_limit" else 403
        body = {
            "error": "Request blocked",
            "message": message,
            "threats": [
                {"type": t.type.value, "severity": t.severity.value, "description": t.description}
                for t in decision.threats if t.blocked
            ],
        }
        headers = {"X-Blocked-By": decision.blocked_by or "unknown"}
        return response.json(body, status=status, headers=headers)

    def send_json(self, data: dict):
        """Send JSON response"""
        return response.json(data)


def install_guard(app: Sanic, guard: Guard, health_routes: bool = True,
                  parser: Optional[RequestParser] = None, responder: Optional[ResponseBuilder] = None):
    """Evaluate every request before its handler runs"""
    parser = parser or RequestParser()
    responder = responder or ResponseBuilder()
    logger = logging.getLogger(__name__)

    async def guard_request(request: Request):
        decision = guard.evaluate(parser.parse(request))
        request.ctx.security = decision
        if not decision.allowed:
            logger.info(f"Rejecting {request.method} {request.path} ({decision.blocked_by})")
            return responder.blocked(decision, guard.block_message)

    app.register_middleware(guard_request, "request")
    app.ctx.guard = guard

    if health_routes:
        monitor = HealthMonitor(guard, responder)
        app.add_route(monitor.handle_health, "/health", methods=["GET"], name="guard_health")
        app.add_route(monitor.handle_stats, "/stats", methods=["GET"], name="guard_stats")

    @app.after_server_stop
    async def close_guard(app, loop):
        guard.close()

    return app
