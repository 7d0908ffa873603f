"""
Railway Coach Inspection Service
Blueprint registry helpers.
"""

from flask import request

from railinspect.utils.helpers import clamp_pagination


def pagination_args():
    """Read ``page`` / ``limit`` query params, clamped to the accepted range.

    Query params:
        page  — 1-based page number (default 1)
        limit — page size (default LIST_DEFAULT_LIMIT, capped at LIST_MAX_LIMIT)
    """
    return clamp_pagination(request.args.get("page"), request.args.get("limit"))


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
