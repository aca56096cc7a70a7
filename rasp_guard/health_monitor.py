"""
Health Monitor module - Health and statistics endpoints
"""

import time

from sanic import Request


class HealthMonitor:
    """Serve guard health and statistics"""

    def __init__(self, guard, responder):
        self.guard = guard
        self.responder = responder

    def health(self) -> dict:
        stats = self.guard.get_stats()
        return {
            "status": "healthy",
            "timestamp": int(time.time()),
            "guard": "enforcing" if self.guard.config.block_mode else "monitoring",
            "detectors": [d.name for d in self.guard.engine.detectors],
            "uptime": stats["uptime_seconds"],
        }

    def stats(self) -> dict:
        return {
            "timestamp": int(time.time()),
            "stats": self.guard.get_stats(),
            "analytics": self.guard.get_analytics(),
        }

    async def handle_health(self, request: Request):
        """GET /health"""
        return self.responder.send_json(self.health())

    async def handle_stats(self, request: Request):
        """GET /stats"""
        return self.responder.send_json(self.stats())
