"""
Service error taxonomy.
Each error carries the HTTP status and stable code the API reports for it.
"""
from typing import Optional, Dict, Any


class ServiceError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Malformed or missing input."""
    status_code = 400
    code = "validation_error"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class Unauthorized(ServiceError):
    """Role or ownership check failed."""
    status_code = 403
    code = "unauthorized"


class InsufficientStock(ServiceError):
    status_code = 409
    code = "insufficient_stock"


class InvalidState(ServiceError):
    """Illegal state transition."""
    status_code = 409
    code = "invalid_state"


class Conflict(ServiceError):
    """Concurrent update race; the whole operation may be retried."""
    status_code = 409
    code = "conflict"
    retryable = True


class StorageUnavailable(ServiceError):
    status_code = 503
    code = "storage_unavailable"
