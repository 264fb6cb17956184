"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

AGENT_WRITE_LIMIT = "60/minute"
ADMIN_WRITE_LIMIT = "30/minute"
OUTBOX_LIMIT = "600/minute"


def actor_rate_limit_key():
    """Rate limit key: the authenticated actor if any, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None and actor.email:
        return f"actor:{actor.email}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Agent step mutations:   60/minute
        - Admin dossier routes:   30/minute
        - Outbox polling:         600/minute (orchestrator polls in a loop)
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("agent_steps")
    if bp:
        limiter.limit(AGENT_WRITE_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("admin_dossiers")
    if bp:
        limiter.limit(ADMIN_WRITE_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("events")
    if bp:
        limiter.limit(OUTBOX_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — agent: %s, admin: %s, outbox: %s",
        AGENT_WRITE_LIMIT, ADMIN_WRITE_LIMIT, OUTBOX_LIMIT,
    )
