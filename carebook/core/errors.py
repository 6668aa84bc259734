from typing import Any, Dict, Optional


class ErrorCode:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TRANSACTION_ERROR = "TRANSACTION_ERROR"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    DUPLICATE_PRESCRIPTION = "DUPLICATE_PRESCRIPTION"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CareBookError(Exception):
    """Base exception for all booking, schedule and prescription errors."""

    code = ErrorCode.INTERNAL_ERROR
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.context:
            body["details"] = self.context
        return body


class ValidationError(CareBookError):
    """Malformed or semantically invalid input."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class AuthorizationError(CareBookError):
    """The caller lacks the role or ownership required for the action."""

    code = ErrorCode.AUTHORIZATION_ERROR
    status_code = 403


class NotFoundError(CareBookError):
    """A referenced record does not exist or does not match the scoping filter."""

    code = ErrorCode.NOT_FOUND
    status_code = 404


class ConflictError(CareBookError):
    """A slot is no longer available or a double-booking was detected."""

    code = ErrorCode.CONFLICT
    status_code = 400


class DuplicatePrescriptionError(CareBookError):
    """The appointment already has a prescription."""

    code = ErrorCode.DUPLICATE_PRESCRIPTION
    status_code = 400

    def __init__(self, appointment_id: int) -> None:
        self.appointment_id = appointment_id
        super().__init__(
            "A prescription already exists for this appointment",
            {"appointment_id": appointment_id},
        )


class TransactionError(CareBookError):
    """A multi-record transaction could not be committed."""

    code = ErrorCode.TRANSACTION_ERROR
    status_code = 409


class ConcurrentModificationError(TransactionError):
    """A compare-and-swap on a versioned row lost against a concurrent writer.

    Raised inside a transaction attempt; the transaction runner treats it as a
    write conflict and restarts the attempt.
    """

    code = ErrorCode.CONCURRENT_MODIFICATION
