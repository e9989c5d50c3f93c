"""Domain exceptions for the allocation quota and claim ledger."""


class LedgerError(Exception):
    """Base class for ledger exceptions with HTTP status code.

    All domain exceptions inherit from this class and define their
    specific status_code and error_code for consistent HTTP responses.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "Ledger error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message}


# --- Validation (400) -------------------------------------------------------

class LedgerValidationError(LedgerError):
    """Malformed input, checked before any lookup or mutation."""
    status_code = 400
    error_code = "validation_error"


class InvalidTokenFormat(LedgerValidationError):
    error_code = "invalid_token_format"

    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(
            f"Invalid student token format. Expected format: {prefix}-{{student_number}}"
        )


class InvalidQuantity(LedgerValidationError):
    error_code = "invalid_quantity"

    def __init__(self, detail: str = "Quantity must be a positive integer"):
        super().__init__(detail)


class InvalidDate(LedgerValidationError):
    error_code = "invalid_date"

    def __init__(self, detail: str = "Cannot allocate menu for past dates"):
        super().__init__(detail)


class QuotaExhausted(LedgerError):
    """No portions left on the allocation.

    A business rule violation rather than a conflict, so clients can tell
    "no portions left" apart from "already claimed".
    """
    status_code = 400
    error_code = "quota_exhausted"

    def __init__(self, allocation_id: str, quantity: int, distributed: int):
        self.allocation_id = allocation_id
        self.quantity = quantity
        self.distributed = distributed
        super().__init__("No more portions available for this menu allocation")

    def to_response(self) -> dict:
        body = super().to_response()
        body["allocation"] = {
            "id": self.allocation_id,
            "total_quantity": self.quantity,
            "distributed_count": self.distributed,
            "remaining_quantity": max(self.quantity - self.distributed, 0),
        }
        return body


# --- Not found (404) --------------------------------------------------------

class NotFound(LedgerError):
    """Missing record, or a record outside the caller's scope."""
    status_code = 404
    error_code = "not_found"


class StudentNotFound(NotFound):
    error_code = "student_not_found"

    def __init__(self, detail: str = "Student not found or does not belong to this school"):
        super().__init__(detail)


class AllocationNotFound(NotFound):
    error_code = "allocation_not_found"

    def __init__(self, allocation_id: str | None = None):
        self.allocation_id = allocation_id
        super().__init__("Menu allocation not found")


class SchoolNotFound(NotFound):
    error_code = "school_not_found"

    def __init__(self, school_id: str | None = None):
        self.school_id = school_id
        super().__init__("School not found")


class InvalidReference(NotFound):
    """A referenced school or menu does not exist (or is out of scope)."""
    error_code = "invalid_reference"

    def __init__(self, entity: str, entity_id: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found")


# --- Conflict (409) ---------------------------------------------------------

class Conflict(LedgerError):
    status_code = 409
    error_code = "conflict"


class DuplicateAllocation(Conflict):
    error_code = "duplicate_allocation"

    def __init__(self) -> None:
        super().__init__(
            "Menu allocation for this school, menu and date already exists"
        )


class AlreadyClaimed(Conflict):
    error_code = "already_claimed"

    def __init__(self, student_id: str | None = None, allocation_id: str | None = None):
        self.student_id = student_id
        self.allocation_id = allocation_id
        super().__init__("Student has already claimed this meal allocation")


class HasClaims(Conflict):
    """Mutation refused because claims already reference the allocation."""
    error_code = "has_claims"

    def __init__(self, distributed: int, detail: str | None = None):
        self.distributed = distributed
        super().__init__(
            detail
            or f"Allocation already has {distributed} claim(s) recorded against it"
        )
