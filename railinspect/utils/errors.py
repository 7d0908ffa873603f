"""Standardised API error responses.

Usage
-----
    from railinspect.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Session not found")
    return api_error(E.VALIDATION_REQUIRED, "coach_number is required")

Service exceptions are rendered through :func:`register_error_handlers`,
which maps each exception's ``code`` to an HTTP status via ``_DEFAULT_STATUS``.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from railinspect.core.exceptions import InspectionError, NotFoundError, ValidationError
from railinspect.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    DENIED = "ERR_DENIED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Session / defect state – HTTP 409
    SESSION_TERMINAL = "ERR_SESSION_TERMINAL"
    ALREADY_TRANSITIONED = "ERR_ALREADY_TRANSITIONED"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    DUPLICATE_DEFECT = "ERR_DUPLICATE_DEFECT"
    ALREADY_RESOLVED = "ERR_ALREADY_RESOLVED"

    # Preconditions – HTTP 422
    INCOMPLETE_CHECKLIST = "ERR_INCOMPLETE_CHECKLIST"
    UNRESOLVED_DEFECTS = "ERR_UNRESOLVED_DEFECTS"
    MISSING_EVIDENCE = "ERR_MISSING_EVIDENCE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.UNAUTHORIZED: 403,
    E.DENIED: 403,
    E.NOT_FOUND: 404,
    E.SESSION_TERMINAL: 409,
    E.ALREADY_TRANSITIONED: 409,
    E.INVALID_TRANSITION: 409,
    E.DUPLICATE_DEFECT: 409,
    E.ALREADY_RESOLVED: 409,
    E.INCOMPLETE_CHECKLIST: 422,
    E.UNRESOLVED_DEFECTS: 422,
    E.MISSING_EVIDENCE: 422,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing question ids, defect ids, …).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Install app-wide handlers for the service exception families."""

    @app.errorhandler(InspectionError)
    def _handle_inspection_error(error: InspectionError):
        logger.info("Inspection error %s: %s", error.code, error)
        return api_error(error.code, str(error), details=error.details)

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error), details=error.details)

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(SQLAlchemyError)
    def _handle_database_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error: %s", error)
        return api_error(E.DATABASE, "Database error")
