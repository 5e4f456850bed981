"""
JWT Service — access tokens that carry the acting user.

Algorithm:     HS256
Lifetime:      JWT_ACCESS_EXPIRES seconds (default 15 minutes)

Payload:
{
    "sub": "<user_id>",
    "tenant_id": <tenant_id>,
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Tokens say who is acting. What that user may do is always read from the
stored User row, never from a claim.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

DEFAULT_ACCESS_EXPIRES = 900
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user_id: int, tenant_id: int) -> str:
    """Sign a short-lived access token for *user_id* in *tenant_id*."""
    now = datetime.now(timezone.utc)
    expires = current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)
    payload = {
        # PyJWT requires a string subject
        "sub": str(user_id),
        "tenant_id": tenant_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=expires),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify signature, expiry and token type.

    Raises jwt.InvalidTokenError (or a subclass such as
    ExpiredSignatureError) when the token is not acceptable.
    """
    payload = jwt.decode(
        token, _get_secret(), algorithms=[ALGORITHM],
        options={"require": ["sub", "exp", "type"]},
    )
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload
