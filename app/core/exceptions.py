"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes everywhere (see app.utils.errors).

Usage:
    from app.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="StepInstance", resource_id=step_instance_id)
    raise ForbiddenError("You are not assigned to this step", reason="not_assigned")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Dossier", "StepInstance").
        resource_id: The PK that was looked up. Included in logs and message.
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
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the target is already in the state the operation would produce.

    Covers both duplicate unique values and terminal-state conflicts such as
    completing a step instance twice.

    Args:
        resource: Model name.
        field: The field whose current value conflicts.
        value: The conflicting value.
        message: Optional override of the generated message.
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
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class ForbiddenError(Exception):
    """Raised when the actor is authenticated but not allowed to act.

    Wrong role, wrong agent-type / step-type pairing, or not the assigned agent.
    """

    def __init__(self, message: str, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class FailedPreconditionError(Exception):
    """Raised when the operation is valid but the world is not ready for it yet.

    Expected and recoverable: e.g. required documents not delivered before a
    createur completes an ADMIN step.
    """

    def __init__(self, message: str, code: str, details: dict | None = None) -> None:
        self.code = code
        self.details = details or {}
        super().__init__(message)
