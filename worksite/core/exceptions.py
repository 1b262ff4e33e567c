"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes and error envelopes everywhere.

Two families:
  - Caller errors (NotFoundError, ValidationError, InvalidTransitionError) are
    surfaced as-is and must not be retried unchanged.
  - Operational errors (OperationalError subclasses) carry enough context for
    the caller to retry the whole operation.

Usage:
    from worksite.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="WorkPackage", resource_id=42)
    raise InvalidTransitionError("Step", 7, "cancelled", "completed")
"""


class NotFoundError(Exception):
    """Raised when a requested entity id cannot be resolved.

    Args:
        resource: Human-readable entity name (e.g. "WorkPackage", "ResourceSlot").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a requested status change is not an edge of the state graph.

    Args:
        resource: Entity kind ("WorkPackage", "Step", "Task").
        resource_id: Entity PK.
        current_status: Status the entity is in.
        target_status: Status that was requested.
        reason: Optional extra explanation (e.g. open children).
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        current_status: str,
        target_status: str,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        msg = f"Invalid transition for {resource} id={resource_id}: {current_status} → {target_status}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)

    @property
    def details(self) -> dict:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "current_status": self.current_status,
            "target_status": self.target_status,
            "reason": self.reason,
        }


class OperationalError(Exception):
    """Base class for retryable operational failures."""

    retryable = True

    def __init__(self, message: str, **context) -> None:
        self.context = context
        super().__init__(message)

    @property
    def details(self) -> dict:
        return {**self.context, "retryable": self.retryable}


class CascadeFailureError(OperationalError):
    """Persistence failed while applying a multi-entity transition.

    The transaction has been rolled back; no partial cascade is visible.
    """

    def __init__(self, resource: str, resource_id: int | str, cause: str = "") -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"Cascade on {resource} id={resource_id} failed and was rolled back"
        if cause:
            msg += f": {cause}"
        super().__init__(msg, resource=resource, resource_id=resource_id)


class PoolExhaustedError(OperationalError):
    """No available resource slot in the requested category."""

    def __init__(self, category: str, specialty: str | None = None) -> None:
        self.category = category
        self.specialty = specialty
        msg = f"No available resource slot for category '{category}'"
        if specialty:
            msg += f" (specialty '{specialty}')"
        super().__init__(msg, category=category, specialty=specialty)


class AssignmentConflictError(OperationalError):
    """Lost a race for a slot (it was no longer available at assignment time)."""

    def __init__(self, category: str, slot_id: int | None = None, reason: str = "") -> None:
        self.category = category
        self.slot_id = slot_id
        msg = f"Resource slot assignment conflict for category '{category}'"
        if slot_id is not None:
            msg += f" (slot id={slot_id})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, category=category, slot_id=slot_id)


class SyncFailureError(OperationalError):
    """Pushing content to the external sync service failed."""

    def __init__(
        self,
        category: str,
        external_ref_id: str,
        error: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.category = category
        self.external_ref_id = external_ref_id
        self.status_code = status_code
        msg = f"Content sync failed for '{category}' resource {external_ref_id}"
        if error:
            msg += f": {error}"
        super().__init__(
            msg,
            category=category,
            external_ref_id=external_ref_id,
            status_code=status_code,
        )
