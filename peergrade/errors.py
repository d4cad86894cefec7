"""
peergrade/errors.py
Centralized Error Handling

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 200/201: Successful, valid request
- 400: Invalid input, limit exceeded, invalid state
- 404: Resource does not exist
- 422: Validation error (Pydantic)
- 429: Rate limit exceeded
- 503: Backing store unavailable
- 500: NEVER caused by user input (internal only)
"""

import uuid
from typing import Optional, Dict, Any
from fastapi import status
from fastapi.responses import JSONResponse


class ErrorCode:
    """Unique error codes for machine-readable error handling"""
    
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    
    NOT_FOUND = "NOT_FOUND"
    ASSIGNMENT_NOT_FOUND = "ASSIGNMENT_NOT_FOUND"
    
    INVALID_STATE = "INVALID_STATE"
    ALREADY_DISTRIBUTED = "ALREADY_DISTRIBUTED"
    NO_SUBMISSIONS = "NO_SUBMISSIONS"
    GRADES_NOT_READY = "GRADES_NOT_READY"
    EVALUATION_CLOSED = "EVALUATION_CLOSED"
    
    SELF_EVALUATION = "SELF_EVALUATION"
    DUPLICATE_INVESTMENT = "DUPLICATE_INVESTMENT"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    NOT_ASSIGNED = "NOT_ASSIGNED"
    
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(Exception):
    """Base API exception with consistent structure"""
    
    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)
    
    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class InvalidStateError(APIError):
    """400 Bad Request - Operation not allowed in current state"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_STATE, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Invalid State",
            message=message,
            code=code,
            details=details
        )


class ServiceUnavailableError(APIError):
    """503 Service Unavailable - Backing store unreachable"""
    def __init__(self, message: str = "The database is temporarily unavailable. Please try again later."):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="Service Unavailable",
            message=message,
            code=ErrorCode.SERVICE_UNAVAILABLE
        )


class InternalError(APIError):
    """500 Internal Server Error - Use sparingly, only for true internal failures"""
    def __init__(self, message: str = "An internal error occurred", log_id: Optional[str] = None):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            details=details
        )


def new_log_id() -> str:
    """Short correlation id for log lines and error responses."""
    return str(uuid.uuid4())[:8]


INVALID_STATE_CODES = {
    ErrorCode.INVALID_STATE,
    ErrorCode.ALREADY_DISTRIBUTED,
    ErrorCode.NO_SUBMISSIONS,
    ErrorCode.GRADES_NOT_READY,
}


def from_service_error(exc: Exception, details: Optional[Dict[str, Any]] = None) -> APIError:
    """
    Translate a service-layer exception into an APIError.

    Service exceptions carry a `code` and a `message`; the code decides the
    HTTP status (404 for *_NOT_FOUND, 400 otherwise).
    """
    code = getattr(exc, "code", ErrorCode.INVALID_INPUT)
    message = getattr(exc, "message", str(exc))

    if code.endswith("NOT_FOUND"):
        return APIError(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code,
            details=details
        )
    if code in INVALID_STATE_CODES:
        return InvalidStateError(message, code=code, details=details)
    return BadRequestError(message, code=code, details=details)
