"""
Service-layer exception hierarchy.

Services raise these; blueprints never catch them. ``create_app`` registers
one JSON handler per type so every endpoint answers with the same status
codes and body shape.

Usage:
    from sitebooks.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Expense", resource_id=expense_id)
    raise ValidationError("Validation failed", errors=[{"field": "amount", "message": "..."}])
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Expense", "Subcontract").
        resource_id: The id that was looked up. Included in logs and the message.
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
    """Raised when input fails field-level or business-rule validation.

    The caller can recover by correcting the input. Maps to HTTP 422 in the
    REST API and to ``VALIDATION_ERROR`` on the OCR ingestion endpoint.

    Args:
        message: Human-readable explanation of what failed.
        errors: Field-level list of ``{"field": ..., "message": ...}`` dicts.
        details: Optional free-form context for structured API responses.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict] | None = None,
        details: dict | None = None,
    ) -> None:
        self.errors = errors or []
        self.details = details or {}
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message}])


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidStateTransition(Exception):
    """Raised when a workflow action is not allowed from the entity's current status.

    Not recoverable by retrying: the entity has moved on (or never got there).
    A rejected certificate, for example, needs a new draft. Maps to HTTP 409.

    Args:
        entity_type: "expense", "certificate", "subcontract", ...
        entity_id: Id of the entity whose transition was refused.
        current: Status the entity is in.
        target: Status (or action) that was requested.
        reason: Optional extra explanation.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str | None,
        current: str,
        target: str,
        reason: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.target = target
        self.reason = reason
        msg = f"Cannot move {entity_type} {entity_id} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StoreFailure(Exception):
    """Raised when the backing store rejects a write.

    Surfaced as a generic error state; never retried automatically.
    """


class RateLimitExceeded(Exception):
    """Raised when a caller exceeds its admission window. Maps to HTTP 429."""

    def __init__(self, identifier: str, limit: int, window_ms: int) -> None:
        self.identifier = identifier
        self.limit = limit
        self.window_ms = window_ms
        super().__init__(f"Rate limit of {limit} requests per {window_ms}ms exceeded for {identifier}")


class AuditLogImmutableError(Exception):
    """Raised when code tries to update or delete an audit log entry."""
