# errors.py
from typing import Any, Optional


class FuelSyncError(Exception):
    """Base class for domain errors; carries an HTTP status and a machine-readable kind."""
    status_code = 500
    default_kind = "server_error"

    def __init__(self, message: str, kind: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.details = details

    def to_dict(self) -> dict:
        out = {"success": False, "error": self.message, "kind": self.kind}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(FuelSyncError):
    """Raised when input breaks a business rule (negative litres, payment mismatch, no price...)."""
    status_code = 400
    default_kind = "validation_error"


class ConflictError(FuelSyncError):
    """Raised on duplicates: second reading for a nozzle+date, second price for a date."""
    status_code = 409
    default_kind = "conflict"


class NotFoundError(FuelSyncError):
    status_code = 404
    default_kind = "not_found"
