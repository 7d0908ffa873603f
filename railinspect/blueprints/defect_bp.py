"""
Railway Coach Inspection Service
Defect blueprint — raise, resolve and list defects.

Endpoints summary:
    DEFECT  /api/v1/defects                          POST
            /api/v1/defects/<id>/resolve             POST
            /api/v1/sessions/<id>/defects            GET   (?status=OPEN|RESOLVED)

Photo fields are opaque references produced by the photo store.
"""

import logging

from flask import Blueprint, jsonify, request

from railinspect.auth import current_principal
from railinspect.blueprints import json_body
from railinspect.services import defect_ledger
from railinspect.utils.errors import E, api_error

logger = logging.getLogger(__name__)

defect_bp = Blueprint("defects", __name__, url_prefix="/api/v1")


@defect_bp.route("/defects", methods=["POST"])
def raise_defect():
    data = json_body()
    missing = [f for f in ("session_id", "question_id") if data.get(f) in (None, "")]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} required",
                         details={"fields": missing})
    try:
        session_id = int(data["session_id"])
        question_id = int(data["question_id"])
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "session_id and question_id must be integers")

    reasons = data.get("reasons") or []
    if not isinstance(reasons, list):
        return api_error(E.VALIDATION_INVALID, "reasons must be a list")

    defect = defect_ledger.raise_defect(
        session_id,
        question_id,
        current_principal(),
        before_photo=data.get("before_photo"),
        reasons=reasons,
        remarks=str(data.get("remarks") or ""),
    )
    return jsonify(defect.to_dict()), 201


@defect_bp.route("/defects/<int:defect_id>/resolve", methods=["POST"])
def resolve_defect(defect_id):
    data = json_body()
    defect = defect_ledger.resolve_defect(
        defect_id,
        current_principal(),
        after_photo=data.get("after_photo"),
        resolution_remark=str(data.get("resolution_remark") or ""),
    )
    return jsonify(defect.to_dict()), 200


@defect_bp.route("/sessions/<int:session_id>/defects", methods=["GET"])
def list_session_defects(session_id):
    status = (request.args.get("status") or "").strip().upper() or None
    defects = defect_ledger.list_session_defects(session_id, status)
    return jsonify({"items": [d.to_dict() for d in defects], "total": len(defects)})
