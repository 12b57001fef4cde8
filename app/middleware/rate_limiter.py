"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

API_BLUEPRINTS = ("solution_bp", "approval_bp", "workflow_bp")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Write endpoints:  60/minute  (POST/PUT/DELETE)
        - Read endpoints:   200/minute (GET)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=%s)", app.config.get("TESTING"))
        return

    for bp_name in API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, methods=["POST", "PUT", "DELETE"])(bp)
            limiter.limit(READ_LIMIT, methods=["GET"])(bp)

    # Health check: exempt from rate limiting
    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured (write=%s, read=%s)", WRITE_LIMIT, READ_LIMIT)
