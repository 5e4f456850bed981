"""
Audit Engagement Workflow
Request authentication and acting-user resolution.

Two layers, both installed by ``init_auth``:

    service level   every /api/v1/* call (health probes excepted) presents
                    an ``X-API-Key`` listed in ``API_KEYS``; switched off
                    with ``API_AUTH_ENABLED=false``
    user level      workflow views decorated with ``require_user`` need an
                    ``Authorization: Bearer <jwt>`` access token whose
                    ``sub`` names an active user of the store

The token is verified with ``jwt_service.decode_access_token`` and its
``tenant_id`` claim must match the user's tenant. The acting user's audit
role is read from the stored ``User`` row. A request can prove who is
acting, never what they are allowed to do.

Mutating requests with a body must be JSON, which also keeps plain HTML
form posts out.
"""

import functools
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional

import jwt as pyjwt
from flask import current_app, g, jsonify, request

from auditflow.models import db
from auditflow.models.auth import User
from auditflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

_API_PREFIX = "/api/v1/"
_PUBLIC_PREFIX = "/api/v1/health"
_MUTATING = ("POST", "PUT", "PATCH", "DELETE")
_DISABLED_VALUES = ("false", "0", "no", "off")


@dataclass(frozen=True)
class ActingUser:
    """Who performs a workflow operation, as resolved from the user store."""
    id: int
    tenant_id: int
    role: str
    full_name: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "ActingUser":
        return cls(id=user.id, tenant_id=user.tenant_id, role=user.role, full_name=user.full_name)


# ── Service-level API keys ───────────────────────────────────────────────────


def _configured_api_keys() -> list[str]:
    return [k.strip() for k in os.getenv("API_KEYS", "").split(",") if k.strip()]


def _is_auth_enabled() -> bool:
    """Environment wins over app config; outside an app context auth is on."""
    value = os.getenv("API_AUTH_ENABLED", "")
    if not value:
        try:
            value = str(current_app.config.get("API_AUTH_ENABLED", "true"))
        except RuntimeError:
            return True
    return value.lower() not in _DISABLED_VALUES


def _api_key_error():
    """Return an error response when the request's API key is unacceptable."""
    presented = request.headers.get("X-API-Key", "").strip()
    if not presented:
        return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

    keys = _configured_api_keys()
    if not keys:
        logger.error("API key auth is enabled but API_KEYS is empty")
        return jsonify({"error": "Server authentication not configured"}), 500

    if not any(hmac.compare_digest(presented.encode(), key.encode()) for key in keys):
        logger.warning("Rejected API key %s...", presented[:6])
        return jsonify({"error": "Invalid API key"}), 401

    g.api_key = presented
    return None


def _non_json_body_error():
    if request.method not in _MUTATING or not request.content_length:
        return None
    if "application/json" in (request.content_type or ""):
        return None
    return jsonify({"error": "Content-Type must be application/json for state-changing requests"}), 415


# ── Acting user ──────────────────────────────────────────────────────────────


def _bearer_claims() -> Optional[dict]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    try:
        return decode_access_token(header[7:].strip())
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired access token presented")
    except pyjwt.InvalidTokenError as exc:
        logger.warning("Rejected access token: %s", exc)
    return None


def current_user() -> Optional[ActingUser]:
    """Resolve the acting user for this request, or None.

    Verifies the Bearer token, then loads the User named by ``sub``.
    Unknown or inactive users, and tokens whose ``tenant_id`` does not
    match the user's tenant, resolve to None. Cached on ``g`` for the
    rest of the request.
    """
    if "acting_user" in g:
        return g.acting_user

    acting = None
    claims = _bearer_claims()
    raw = str(claims.get("sub", "")) if claims else ""
    if raw.isdigit():
        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            logger.warning("Unknown or inactive acting user id=%s", raw)
        elif claims.get("tenant_id") != user.tenant_id:
            logger.warning("Token tenant does not match user id=%s", raw)
        else:
            acting = ActingUser.from_user(user)
    g.acting_user = acting
    return acting


def require_user(f):
    """View decorator: 401 unless an acting user resolves; passes ``acting_user=``."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        acting = current_user()
        if acting is None:
            return jsonify({"error": "Authentication required. Provide a Bearer access token."}), 401
        return f(*args, acting_user=acting, **kwargs)

    return decorated


# ── Installer ────────────────────────────────────────────────────────────────


def init_auth(app):
    """Register the API authentication hook on *app*."""

    @app.before_request
    def _authenticate():
        g.pop("acting_user", None)
        path = request.path
        if not path.startswith(_API_PREFIX) or path.startswith(_PUBLIC_PREFIX):
            return None
        if request.method == "OPTIONS":
            return None

        error = _non_json_body_error()
        if error is not None:
            return error

        if not _is_auth_enabled():
            g.api_key = "dev-mode"
            return None
        return _api_key_error()

    logger.info("API auth hook installed (enabled=%s)", _is_auth_enabled())
