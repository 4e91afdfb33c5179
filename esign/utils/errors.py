"""Error types raised by the signature workflow and their JSON envelope."""

from dataclasses import asdict, dataclass, field
from http import HTTPStatus
from typing import Any, Dict, List, Optional


@dataclass
class FieldError:
    """One rejected input, addressed by a dotted field path."""

    field: str
    message: str
    code: str = "invalid"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class ErrorResponse:
    """Body and status for an ``{"error": {...}}`` response."""

    message: str
    status_code: int
    error_code: str
    details: Optional[Dict[str, Any]] = None
    field_errors: List[FieldError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.error_code}
        if self.details:
            body["details"] = self.details
        if self.field_errors:
            body["field_errors"] = [e.to_dict() for e in self.field_errors]
        return {"error": body}


class APIError(Exception):
    """
    Base for every error the API reports to callers.

    Subclasses fix ``status_code``, ``error_code`` and a default ``message``.
    """

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[List[FieldError]] = None,
    ):
        self.message = message or type(self).message
        self.details = details
        self.field_errors = list(field_errors or [])
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            self.message,
            int(self.status_code),
            self.error_code,
            self.details,
            self.field_errors,
        )


class ValidationError(APIError):
    """Malformed fields or recipients, rejected before activation."""

    status_code: int = HTTPStatus.BAD_REQUEST
    error_code: str = "validation_error"
    message: str = "Request validation failed"


class NotFoundError(APIError):
    """Exception for resource not found."""

    status_code: int = HTTPStatus.NOT_FOUND
    error_code: str = "not_found"
    message: str = "Resource not found"


class DocumentNotFoundError(NotFoundError):
    """The document store holds nothing at the given path."""

    error_code: str = "document_not_found"
    message: str = "Document not found"


class UnauthorizedError(APIError):
    """Exception for authentication failures."""

    status_code: int = HTTPStatus.UNAUTHORIZED
    error_code: str = "unauthorized"
    message: str = "Authentication required"


class ForbiddenError(APIError):
    """Exception for authorization failures."""

    status_code: int = HTTPStatus.FORBIDDEN
    error_code: str = "forbidden"
    message: str = "Access denied"


class InvalidStateError(APIError):
    """Operation attempted from the wrong lifecycle state."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "invalid_state"
    message: str = "Operation not allowed in the current state"


# =============================================================================
# Access Control Errors
# =============================================================================

class AccessError(APIError):
    """Base class for per-recipient token failures."""

    status_code: int = HTTPStatus.GONE
    error_code: str = "access_invalid"
    message: str = "This signing link is no longer valid"


class TokenNotFoundError(AccessError):
    """No recipient holds the presented token."""

    status_code: int = HTTPStatus.NOT_FOUND
    error_code: str = "token_not_found"


class TokenExpiredError(AccessError):
    """The token's expiry has passed."""

    error_code: str = "token_expired"


class TokenRevokedError(AccessError):
    """The token or session was invalidated, or the request is closed."""

    error_code: str = "token_revoked"


# =============================================================================
# Signing Errors
# =============================================================================

class OutOfOrderError(APIError):
    """A recipient tried to sign before earlier recipients in sequence."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "out_of_order"
    message: str = "Earlier recipients must sign first"


class AlreadySignedError(APIError):
    """The field already carries a signature."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "already_signed"
    message: str = "This field has already been signed"


class SealingFailedError(APIError):
    """
    Finalizing the signed document failed.

    Signatures are already recorded; the seal can be retried.
    """

    status_code: int = HTTPStatus.SERVICE_UNAVAILABLE
    error_code: str = "sealing_failed"
    message: str = "Your signature was recorded; finalization is in progress"


class DocumentIntegrityError(APIError):
    """A stored document no longer matches the digest recorded for it."""

    error_code: str = "document_integrity_failed"
    message: str = "Stored document does not match its recorded hash"


class AuditLogImmutableError(APIError):
    """Raised when something attempts to modify an append-only record."""

    error_code: str = "immutable_record"
    message: str = "Audit records cannot be modified or deleted"


def create_field_error(field: str, message: str, code: str = "invalid") -> FieldError:
    return FieldError(field, message, code)


def create_validation_error(field_errors: List[FieldError]) -> ValidationError:
    return ValidationError(field_errors=field_errors)


def create_not_found_error(resource_type: str, identifier: Any) -> NotFoundError:
    """``NotFoundError`` naming the missing resource and its identifier."""
    return NotFoundError(
        message=f"{resource_type} not found",
        details={"resource_type": resource_type, "identifier": str(identifier)},
    )
