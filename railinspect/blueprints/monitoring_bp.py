"""
Railway Coach Inspection Service
Monitoring blueprint — cross-module dashboard feed.

Endpoints:
    GET /api/v1/monitoring/sessions   ?page&limit&start_date&end_date&module&inspector&status
    GET /api/v1/monitoring/defects    same filters; status is OPEN | RESOLVED
    GET /api/v1/monitoring/summary    ?module&inspector

Restricted to MONITORING_ROLES (admin by default).
"""

from flask import Blueprint, jsonify, request

from railinspect.auth import current_principal
from railinspect.blueprints import pagination_args
from railinspect.models.inspection import DEFECT_STATUSES
from railinspect.services import monitoring
from railinspect.services.monitoring import MonitoringFilters

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/api/v1/monitoring")


@monitoring_bp.route("/sessions", methods=["GET"])
def list_sessions():
    page, limit = pagination_args()
    filters = MonitoringFilters.from_args(request.args)
    return jsonify(monitoring.list_sessions(current_principal(), page, limit, filters))


@monitoring_bp.route("/defects", methods=["GET"])
def list_defects():
    page, limit = pagination_args()
    filters = MonitoringFilters.from_args(request.args, allowed_statuses=DEFECT_STATUSES)
    return jsonify(monitoring.list_defects(current_principal(), page, limit, filters))


@monitoring_bp.route("/summary", methods=["GET"])
def summary():
    filters = MonitoringFilters.from_args(request.args)
    return jsonify(monitoring.summarize(current_principal(), filters))
