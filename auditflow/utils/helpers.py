"""Shared request helpers for workflow blueprints."""

from flask import request


def get_client_ip() -> str | None:
    """Return real client IP, honouring X-Forwarded-For from load balancers.

    request.remote_addr alone returns the LB address behind a proxy; the
    first X-Forwarded-For entry is the originating client.
    """
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.remote_addr


def get_user_agent() -> str | None:
    return request.headers.get("User-Agent") or None


def json_body() -> dict:
    """Request JSON as a dict; non-object payloads become {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
