"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them
(see app.utils.errors.register_error_handlers) and get consistent HTTP
status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Solution", resource_id=42)
    raise ValidationError("notes are required when rejecting", details={"notes": "required"})
"""


class NotFoundError(Exception):
    """Raised when a referenced Solution / Approval / Workflow does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Solution", "Approval").
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
    """Raised when input is missing or violates a business rule.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidConditionError(ValidationError):
    """Raised when a condition rule's operator/value combination cannot be evaluated.

    Normally caught when the workflow is saved; raised at match time only for
    rows that predate validation or hold a non-numeric solution attribute.
    """


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a record.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose state conflicts.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PersistenceError(Exception):
    """Raised when the datastore rejects a write. The session has been rolled back.

    Maps to HTTP 500. Not retried by the service layer.

    Args:
        operation: Service operation name (e.g. "approval.process").
        entity: Entity type being written.
        entity_id: PK of the entity, when known.
    """

    def __init__(self, operation: str, entity: str, entity_id: int | str | None = None) -> None:
        self.operation = operation
        self.entity = entity
        self.entity_id = entity_id
        msg = f"{operation} failed for {entity}"
        if entity_id is not None:
            msg += f" id={entity_id}"
        super().__init__(msg)
