"""
Typed failures raised by the notification engine and the claim workflow.

Routes never build error responses by hand for these; the app registers a
single handler that turns any WarrantyProError into a JSON body.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    GENERATION_FAILED = "generation_failed"
    DELIVERY_ERROR = "delivery_error"
    CONFLICT = "conflict"
    CLAIM_LOCKED = "claim_locked"


class WarrantyProError(Exception):
    code: ErrorCode = ErrorCode.NOT_FOUND
    status_code: int = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "detail": self.message}


class NotFound(WarrantyProError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class UpstreamUnavailable(WarrantyProError):
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = 503


class GenerationFailed(WarrantyProError):
    code = ErrorCode.GENERATION_FAILED
    status_code = 502


class DeliveryError(WarrantyProError):
    code = ErrorCode.DELIVERY_ERROR
    status_code = 502


class Conflict(WarrantyProError):
    code = ErrorCode.CONFLICT
    status_code = 409


class ClaimLocked(WarrantyProError):
    code = ErrorCode.CLAIM_LOCKED
    status_code = 409
