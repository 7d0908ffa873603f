"""
Railway Coach Inspection Service
Checklist blueprint — read a module's checklist tree.

Endpoints:
    GET /api/v1/checklists/<module>                   nested category tree
    GET /api/v1/checklists/<module>?subcategory_id=   one subcategory subtree
"""

from flask import Blueprint, jsonify, request

from railinspect.services.checklist_store import get_checklist

checklist_bp = Blueprint("checklists", __name__, url_prefix="/api/v1/checklists")


@checklist_bp.route("/<module>", methods=["GET"])
def read_checklist(module):
    subcategory_id = request.args.get("subcategory_id", type=int)
    tree = get_checklist(module.upper(), subcategory_id)
    return jsonify({"module_type": module.upper(), "items": tree})
