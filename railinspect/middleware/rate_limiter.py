"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in railinspect/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from railinspect.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
MONITORING_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Inspection writes (sessions, defects): 120/minute — autosave fires often
        - Monitoring reads:                     200/minute — dashboard polls every 30s
        - Health check:                          exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("sessions", "defects", "checklists"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("monitoring")
    if bp:
        limiter.limit(MONITORING_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — writes: %s, monitoring: %s",
        WRITE_LIMIT, MONITORING_LIMIT,
    )
