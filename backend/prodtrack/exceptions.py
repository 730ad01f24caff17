"""
ProdTrack - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the application.

Usage:
    from prodtrack.exceptions import NotFoundError, ValidationError

    # In a service
    raise NotFoundError("Batch", batch_id)

    # With custom message
    raise ValidationError("quantity_to_build must be positive", field="quantity_to_build")
"""
from typing import Any, Dict, List, Optional


class ProdTrackException(Exception):
    """
    Base exception for all ProdTrack errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "VALIDATION_ERROR")
        status_code: HTTP status code to return
        details: Additional context for debugging
    """

    error_code: str = "PRODTRACK_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# 400 Bad Request Errors
# ===================


class ValidationError(ProdTrackException):
    """Raised when input validation fails."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


class AssemblySelectionError(ValidationError):
    """Raised when a Testing rejection marks every assembly material as good."""

    error_code = "ASSEMBLY_SELECTION_ERROR"

    def __init__(
        self,
        batch_code: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["batch_code"] = batch_code
        super().__init__(
            f"Batch {batch_code}: rejected units reported but every assembly material "
            "is marked good. Leave at least one material unchecked.",
            details=details,
        )


class InvalidStateError(ProdTrackException):
    """Raised when an operation is invalid for the current state."""

    error_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        super().__init__(message, details=details)


class StageAccessError(InvalidStateError):
    """Raised when a batch is not ready for the requested stage."""

    error_code = "STAGE_ACCESS_DENIED"


# ===================
# 404 Not Found Errors
# ===================


class NotFoundError(ProdTrackException):
    """Raised when a resource is not found."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, details=details)


class InventoryItemNotFoundError(NotFoundError):
    """Raised when a material reference matches no raw, pool or final stock item."""

    error_code = "INVENTORY_ITEM_NOT_FOUND"

    def __init__(self, item_id: Any, *, details: Optional[Dict[str, Any]] = None):
        super().__init__("Inventory item", item_id, details=details)


# ===================
# 409 Conflict Errors
# ===================


class ConflictError(ProdTrackException):
    """Raised when there's a resource conflict."""

    error_code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str = "Resource conflict",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class ConcurrencyError(ConflictError):
    """Raised when concurrent modification is detected."""

    error_code = "CONCURRENCY_ERROR"

    def __init__(
        self,
        message: str = "Resource was modified by another user",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class StageAlreadyFinalizedError(ConflictError):
    """Raised when data is submitted for a stage that is already completed."""

    error_code = "STAGE_ALREADY_FINALIZED"

    def __init__(
        self,
        batch_code: str,
        stage: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["batch_code"] = batch_code
        details["stage"] = stage
        super().__init__(
            f"{stage} stage of batch {batch_code} is already completed",
            details=details,
        )


# ===================
# 422 Unprocessable Entity Errors
# ===================


class BusinessRuleError(ProdTrackException):
    """Raised when a business rule is violated."""

    error_code = "BUSINESS_RULE_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str = "Business rule violation",
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class InsufficientStockError(BusinessRuleError):
    """Raised by the finish precheck; lists every shortage found."""

    error_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        shortages: List[Dict[str, Any]],
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["shortages"] = shortages
        lines = [
            f"{s['batch_code']}: {s['material_name']} needs {s['required']}, available {s['available']}"
            for s in shortages
        ]
        super().__init__("Insufficient stock: " + "; ".join(lines), details=details)


# ===================
# 500 Internal Server Errors
# ===================


class DatabaseError(ProdTrackException):
    """Raised when a database operation fails."""

    error_code = "DATABASE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str = "Database operation failed",
        *,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)
