"""
Rate limiting configuration.

The Limiter instance is created in worksite/__init__.py with no default
limits; this module applies limits per blueprint once they are registered.
Reads and writes are counted separately so polling progress does not eat
into the budget for lifecycle verbs. Resource compilation carries its own
tighter limit (COMPILE_RATE_LIMIT), declared on the route in resource_bp.

Usage:
    from worksite.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

READ_LIMIT = "200/minute"
WRITE_LIMIT = "60/minute"

READ_METHODS = ["GET"]
WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]

# blueprint name → (read limit, write limit)
BLUEPRINT_LIMITS = {
    "worksite": (READ_LIMIT, WRITE_LIMIT),
    "resources": (READ_LIMIT, WRITE_LIMIT),
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP, per blueprint):
        - GET:                 200/minute
        - POST/PUT/PATCH/DEL:  60/minute
        - Compile:             COMPILE_RATE_LIMIT on top
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for name, (read_limit, write_limit) in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        limiter.limit(read_limit, methods=READ_METHODS)(bp)
        limiter.limit(write_limit, methods=WRITE_METHODS)(bp)

    app.logger.info(
        "Rate limiter configured — reads: %s, writes: %s, compile: %s",
        READ_LIMIT, WRITE_LIMIT, app.config.get("COMPILE_RATE_LIMIT"),
    )
