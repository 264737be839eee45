"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in docflow/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from docflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints whose routes mutate lifecycle or user state
WRITE_BLUEPRINTS = ("documents", "users")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Write endpoints:  WRITE_RATE_LIMIT (default 60/minute)
        - Health check:     exempt

    Rate limiting is disabled in testing mode or when RATELIMIT_ENABLED is
    False.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    write_limit = app.config.get("WRITE_RATE_LIMIT", "60/minute")
    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured (write: %s, health exempt)", write_limit)
