"""Standardised API error responses.

Usage
-----
    from worksite.utils.errors import api_error, E, register_error_handlers

    return api_error(E.NOT_FOUND, "Step not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")

    register_error_handlers(worksite_bp)   # maps service exceptions once
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from worksite.core.exceptions import (
    AssignmentConflictError,
    CascadeFailureError,
    InvalidTransitionError,
    NotFoundError,
    PoolExhaustedError,
    SyncFailureError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # State graph / pool contention – HTTP 409
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ASSIGNMENT_CONFLICT = "ERR_ASSIGNMENT_CONFLICT"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Operational
    POOL_EXHAUSTED = "ERR_POOL_EXHAUSTED"
    SYNC_FAILURE = "ERR_SYNC_FAILURE"
    CASCADE_FAILURE = "ERR_CASCADE_FAILURE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.ASSIGNMENT_CONFLICT: 409,
    E.CONFLICT_DUPLICATE: 409,
    E.POOL_EXHAUSTED: 503,
    E.SYNC_FAILURE: 502,
    E.CASCADE_FAILURE: 500,
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
        Extra structured payload (entity id, category, retryable flag...).

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


def register_error_handlers(blueprint):
    """Attach the service-exception → HTTP mapping to a blueprint."""

    @blueprint.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @blueprint.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @blueprint.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(E.INVALID_TRANSITION, str(error), details=error.details)

    @blueprint.errorhandler(AssignmentConflictError)
    def _handle_assignment_conflict(error: AssignmentConflictError):
        return api_error(E.ASSIGNMENT_CONFLICT, str(error), details=error.details)

    @blueprint.errorhandler(PoolExhaustedError)
    def _handle_pool_exhausted(error: PoolExhaustedError):
        return api_error(E.POOL_EXHAUSTED, str(error), details=error.details)

    @blueprint.errorhandler(SyncFailureError)
    def _handle_sync_failure(error: SyncFailureError):
        return api_error(E.SYNC_FAILURE, str(error), details=error.details)

    @blueprint.errorhandler(CascadeFailureError)
    def _handle_cascade_failure(error: CascadeFailureError):
        logger.error("Cascade failure endpoint=%s: %s", request.endpoint, error)
        return api_error(E.CASCADE_FAILURE, str(error), details=error.details)
