"""
Railway Coach Inspection Service
Authentication & Authorization Middleware.

Provides:
    - Bearer JWT authentication → ``g.principal`` (Principal(id, role))
    - Principal accessor used by blueprints to hand the caller to services

Security model:
    - All /api/v1/* endpoints require a valid access token (except /api/v1/health)
    - Monitoring reads additionally require one of MONITORING_ROLES (checked in the service)
    - Token issuance is handled by the identity provider, not this service

Configuration:
    API_AUTH_ENABLED  — set to "false" to run every request as a dev admin
                        (development only)
"""

import logging
from dataclasses import dataclass

import jwt as pyjwt
from flask import current_app, g, request

from railinspect.services.jwt_service import decode_access_token
from railinspect.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "supervisor", "inspector"}

# Paths that skip auth entirely
AUTH_SKIP_PREFIXES = (
    "/api/v1/health",
)

DEV_PRINCIPAL_ID = "dev"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller supplied to every service operation."""

    id: str
    role: str

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


def _is_auth_enabled(app=None) -> bool:
    cfg = (app or current_app).config
    return str(cfg.get("API_AUTH_ENABLED", "true")).lower() not in (
        "false", "0", "no", "off",
    )


def current_principal() -> Principal | None:
    """Return the principal attached to the current request, if any."""
    return getattr(g, "principal", None)


def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Parses ``Authorization: Bearer <token>`` for API routes
    - Skips health check and OPTIONS pre-flight requests
    """

    @app.before_request
    def _before_request_auth():
        g.principal = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        if any(path.startswith(prefix) for prefix in AUTH_SKIP_PREFIXES):
            return None
        if request.method == "OPTIONS":
            return None

        if not _is_auth_enabled():
            g.principal = Principal(id=DEV_PRINCIPAL_ID, role="admin")
            return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHENTICATED, "Authentication required. Provide a Bearer token.")

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHENTICATED, "Token expired")
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid token presented on %s", path)
            return api_error(E.UNAUTHENTICATED, "Invalid token")

        role = payload.get("role")
        if role not in ROLES:
            logger.warning("Unknown role '%s' in token for %s", role, payload.get("sub"))
            return api_error(E.UNAUTHENTICATED, "Invalid token")

        g.principal = Principal(id=str(payload["sub"]), role=role)
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled(app))
