"""
Dossier Workflow Platform
Authentication boundary & authorization decorators.

Authentication itself belongs to the identity provider; this module only
turns an inbound request into an Actor the workflow services can reason about.

Provides:
    - Actor: the authenticated caller (user_id, email, role)
    - API key authentication for service-to-service callers (payment callback,
      notification orchestrator) via X-API-Key header → role SYSTEM
    - Development / test headers (X-User-Id, X-User-Email, X-User-Role) when
      API_AUTH_ENABLED is false
    - require_actor / require_role decorators
    - Content-Type enforcement for state-changing requests

Configuration (env vars):
    API_KEYS          — comma-separated service keys, e.g. "key1,key2"
    API_AUTH_ENABLED  — set to "false" to trust dev headers (development only)
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"CLIENT", "AGENT", "ADMIN", "SYSTEM"}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller handed to workflow services."""

    user_id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


SYSTEM_ACTOR = Actor(user_id="system", email="", role="SYSTEM")


def _parse_api_keys() -> set[str]:
    """Parse API_KEYS env var into a set of accepted service keys."""
    raw = os.getenv("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract a service API key from the request header."""
    key = request.headers.get("X-API-Key", "").strip()
    return key or None


def _actor_from_dev_headers() -> Optional[Actor]:
    email = request.headers.get("X-User-Email", "").strip().lower()
    role = request.headers.get("X-User-Role", "").strip().upper()
    if not email and not role:
        return None
    if role not in ROLES:
        logger.warning("Unknown role '%s' in dev headers, defaulting to CLIENT", role)
        role = "CLIENT"
    return Actor(
        user_id=request.headers.get("X-User-Id", "").strip() or email,
        email=email,
        role=role,
    )


def current_actor() -> Optional[Actor]:
    return getattr(g, "actor", None)


# ── Authorization decorators ─────────────────────────────────────────────────

def require_actor(f):
    """Decorator: require an authenticated actor for the endpoint."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_actor() is None:
            return jsonify({"error": "Authentication required", "code": "ERR_UNAUTHENTICATED"}), 401
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: str):
    """
    Decorator: require the actor's role to be one of ``roles``.

    Usage:
        @require_role("ADMIN")
        def reset_dossier(dossier_id): ...
    """
    allowed = {r.upper() for r in roles}

    def decorator(f):
        @functools.wraps(f)
        @require_actor
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor.role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (allowed=%s)",
                    actor.role, request.path, sorted(allowed),
                )
                return jsonify({"error": "Insufficient permissions", "code": "ERR_FORBIDDEN"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content type,
    which makes this a lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install actor resolution on the Flask app.

    Runs after the JWT middleware: when a bearer token already produced
    g.actor, nothing else is consulted.
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if current_actor() is not None:
            return None

        api_key = _get_api_key_from_request()
        if api_key:
            if api_key in _parse_api_keys():
                g.actor = SYSTEM_ACTOR
                return None
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key", "code": "ERR_UNAUTHENTICATED"}), 401

        if not _is_auth_enabled():
            g.actor = _actor_from_dev_headers()
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
