"""
Custom Exception Hierarchy

Structured exceptions shared by the relay pipeline, the delivery queue and the
management API. Every exception carries an ``ErrorCode`` and renders to the
same JSON envelope through ``to_dict()``.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"

    # Payload / formatting errors (2xxx)
    PAYLOAD_PARSE_ERROR = "ERR_2001"
    TRANSFORM_ERROR = "ERR_2002"
    UNSUPPORTED_PLATFORM = "ERR_2003"

    # Delivery queue errors (3xxx)
    DELIVERY_NOT_FOUND = "ERR_3001"
    DELIVERY_FAILED = "ERR_3002"
    DELIVERY_TIMEOUT = "ERR_3003"
    INVALID_STATE_TRANSITION = "ERR_3004"
    INVALID_BULK_ACTION = "ERR_3005"

    # Configuration errors (4xxx)
    INTEGRATION_DISABLED = "ERR_4001"
    INTEGRATION_NOT_ASSOCIATED = "ERR_4002"
    FIELD_FILTER_NOT_FOUND = "ERR_4003"

    # Request log errors (5xxx)
    LOG_ENTRY_NOT_FOUND = "ERR_5001"
    DECRYPTION_FAILED = "ERR_5002"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class ParseError(AppException):
    """Inbound payload is neither well-formed XML nor the test marker"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Failed to parse payload: {message}",
            error_code=ErrorCode.PAYLOAD_PARSE_ERROR,
            status_code=400,
            details=details
        )


class TransformError(AppException):
    """A platform body could not be built from the extracted fields"""

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        error_code: ErrorCode = ErrorCode.TRANSFORM_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=422,
            details={"platform": platform} if platform else None
        )


class DeliveryError(AppException):
    """Non-2xx response or transport failure while dispatching a delivery"""

    def __init__(
        self,
        message: str,
        *,
        response_status: int | None = None,
        response_body: str | None = None,
        error_code: ErrorCode = ErrorCode.DELIVERY_FAILED,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=502,
            details={"response_status": response_status} if response_status else None
        )
        self.response_status = response_status
        self.response_body = response_body

    @classmethod
    def from_response(cls, response: Any, *, max_response_chars: int = 1000) -> "DeliveryError":
        """Build a DeliveryError from a non-2xx httpx response"""
        status_code = getattr(response, "status_code", None)
        response_text = (getattr(response, "text", "") or "")[:max_response_chars]
        return cls(
            f"HTTP {status_code}: {response_text}",
            response_status=status_code,
            response_body=response_text,
        )


class DeliveryNotFoundError(NotFoundException):
    """Raised when a queued delivery does not exist"""

    def __init__(self, delivery_id: int):
        super().__init__(
            resource="Queued delivery",
            identifier=delivery_id,
            error_code=ErrorCode.DELIVERY_NOT_FOUND,
        )


class InvalidStateTransitionError(AppException):
    """Raised when a queue state transition is not allowed"""

    def __init__(self, delivery_id: int, current_state: str, target_state: str):
        super().__init__(
            message=f"Invalid transition for delivery {delivery_id} from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={
                "delivery_id": delivery_id,
                "current_state": current_state,
                "target_state": target_state,
            }
        )


class ConfigurationError(AppException):
    """Integration is disabled, not associated, or references missing config"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )


class DecryptionError(AppException):
    """A stored request log row could not be decrypted or decoded"""

    def __init__(self, message: str = "Failed to decrypt log entry", log_id: int | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.DECRYPTION_FAILED,
            status_code=500,
            details={"log_id": log_id} if log_id is not None else None
        )
