"""Domain errors raised by the donation workflow.

Every error carries a machine readable ``code`` and the HTTP status the API
answers with. They are all recoverable by the caller; persistence failures
are not modelled here and propagate as SQLAlchemy errors.
"""


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(DomainError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidState(DomainError):
    code = "INVALID_STATE"
    status_code = 400


class InvalidTransition(InvalidState):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change status from {current} to {requested}")
        self.current = current
        self.requested = requested


class ClaimConflict(DomainError):
    """Lost the race for a donation."""

    code = "CLAIM_CONFLICT"
    status_code = 409


class DuplicateRequest(DomainError):
    code = "DUPLICATE_REQUEST"
    status_code = 409


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400
