"""
Request timing and access logging.

Every response gets ``X-Request-ID`` (propagated from the caller when
present) and ``X-Request-Duration-Ms``. One access record is logged per
request, carrying the acting user and the engagement / workpaper in the
URL so workflow writes can be traced end to end.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/live"})
_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _level_for(method: str, status: int, duration_ms: float, slow_ms: int) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > slow_ms:
        return logging.WARNING
    # Workflow writes, including denied ones, are worth keeping at INFO
    if method in _WRITE_METHODS:
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register the before/after request hooks on *app*."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _access_log(response):
        started = g.get("request_start")
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.get("request_id", "")
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        if request.path in _QUIET_PATHS:
            return response

        acting = g.get("acting_user")
        view_args = request.view_args or {}
        slow_ms = current_app.config.get("SLOW_REQUEST_MS", 1000)
        logger.log(
            _level_for(request.method, response.status_code, duration_ms, slow_ms),
            "%s %s -> %d (%.0fms)",
            request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "tenant_id": getattr(acting, "tenant_id", None),
                "user_id": getattr(acting, "id", None),
                "engagement_id": view_args.get("engagement_id"),
                "workpaper_id": view_args.get("workpaper_id"),
            },
        )
        return response
