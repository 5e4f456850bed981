"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter is created in ``auditflow/__init__.py`` without default limits;
``init_rate_limits`` attaches ``API_RATE_LIMIT`` (per remote address) to the
workflow and sign-off blueprints after they are registered. Health probes
are exempt. Nothing is applied when TESTING is set.
"""

import logging

logger = logging.getLogger(__name__)

LIMITED_BLUEPRINTS = ("workflow", "signoff")


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        return

    limit = app.config.get("API_RATE_LIMIT", "120/minute")
    for name in LIMITED_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.limit(limit)(bp)

    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits applied: %s on %s", limit, ", ".join(LIMITED_BLUEPRINTS))
