"""
Railway Coach Inspection Service
Session blueprint — start/resume, autosave, submit, complete and progress.

Endpoints summary:
    SESSION   /api/v1/sessions                        POST   (idempotent resume)
              /api/v1/sessions/<id>                   GET
              /api/v1/sessions/<id>/answers           GET, POST (autosave)
              /api/v1/sessions/<id>/submit            POST
              /api/v1/sessions/<id>/complete          POST

    PROGRESS  /api/v1/progress?session_id=&subcategory_id=   GET
"""

import logging

from flask import Blueprint, jsonify, request

from railinspect.auth import current_principal
from railinspect.blueprints import json_body
from railinspect.models import MODULE_TYPES
from railinspect.services import session_lifecycle
from railinspect.services.progress import compute_progress
from railinspect.utils.errors import E, api_error

logger = logging.getLogger(__name__)

session_bp = Blueprint("sessions", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  SESSIONS
# ═══════════════════════════════════════════════════════════════════════════

@session_bp.route("/sessions", methods=["POST"])
def start_session():
    data = json_body()
    coach_number = str(data.get("coach_number") or "").strip()
    module_type = str(data.get("module_type") or data.get("module") or "").strip().upper()
    if not coach_number:
        return api_error(E.VALIDATION_REQUIRED, "coach_number is required")
    if module_type not in MODULE_TYPES:
        return api_error(
            E.VALIDATION_INVALID, "module_type must be one of the inspection modules",
            details={"allowed": list(MODULE_TYPES)},
        )

    principal = current_principal()
    session, created = session_lifecycle.start_or_resume(
        coach_number, module_type, data.get("inspector_id") or principal.id, principal,
    )
    body = session.to_dict()
    body["resumed"] = not created
    return jsonify(body), 201 if created else 200


@session_bp.route("/sessions/<int:session_id>", methods=["GET"])
def get_session(session_id):
    return jsonify(session_lifecycle.get_session(session_id).to_dict())


@session_bp.route("/sessions/<int:session_id>/answers", methods=["POST"])
def autosave(session_id):
    data = json_body()
    if "answers" not in data:
        return api_error(E.VALIDATION_REQUIRED, "answers is required")
    ack = session_lifecycle.autosave(session_id, data["answers"], current_principal())
    return jsonify(ack), 200


@session_bp.route("/sessions/<int:session_id>/answers", methods=["GET"])
def list_answers(session_id):
    answers = session_lifecycle.list_answers(session_id)
    return jsonify({"items": [a.to_dict() for a in answers], "total": len(answers)})


@session_bp.route("/sessions/<int:session_id>/submit", methods=["POST"])
def submit(session_id):
    session = session_lifecycle.submit(session_id, current_principal())
    return jsonify(session.to_dict()), 200


@session_bp.route("/sessions/<int:session_id>/complete", methods=["POST"])
def complete(session_id):
    session = session_lifecycle.complete(session_id, current_principal())
    return jsonify(session.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  PROGRESS
# ═══════════════════════════════════════════════════════════════════════════

@session_bp.route("/progress", methods=["GET"])
def progress():
    session_id = request.args.get("session_id", type=int)
    if session_id is None:
        return api_error(E.VALIDATION_REQUIRED, "session_id is required")
    subcategory_id = request.args.get("subcategory_id", type=int)
    return jsonify(compute_progress(session_id, subcategory_id))
