"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.actor.

Priority order:
  1. JWT (Authorization: Bearer <token>)  →  g.actor from token claims
  2. API key / dev headers (app.auth)     →  g.actor resolved there

An invalid or expired token does not block here: g.actor stays None and the
route-level require_actor decorator answers 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.auth import Actor
from app.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return  # no bearer token, app.auth resolves the actor

        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token on %s", path)
            return

        g.actor = Actor(
            user_id=str(payload.get("sub") or ""),
            email=(payload.get("email") or "").strip().lower(),
            role=(payload.get("role") or "CLIENT").upper(),
        )
