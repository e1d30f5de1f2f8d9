from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
from pydantic import BaseModel
from pollboard.utils.exceptions import CustomException
from pollboard.utils.logger import get_logger

logger = get_logger("response_helper")


class APIResponse(BaseModel):
    """Standard API response model."""

    success: bool = True
    message: str = "Success"
    data: Optional[Any] = None
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """
    Create a success response.

    Args:
        data: Response data (already JSON-compatible)
        message: Success message
        status_code: HTTP status code
        details: Additional details

    Returns:
        JSONResponse: Success response
    """
    response_data = APIResponse(
        success=True,
        message=message,
        data=data,
        details=details
    )

    return JSONResponse(
        status_code=status_code,
        content=response_data.model_dump()
    )


def error_response(
    message: str = "Error",
    status_code: int = 400,
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """
    Create an error response.

    Args:
        message: Error message
        status_code: HTTP status code
        error: Error code
        details: Additional details

    Returns:
        JSONResponse: Error response
    """
    response_data = APIResponse(
        success=False,
        message=message,
        error=error,
        details=details
    )

    return JSONResponse(
        status_code=status_code,
        content=response_data.model_dump()
    )


def exception_response(exc: CustomException) -> JSONResponse:
    """Render an application exception in the standard envelope."""
    return error_response(
        message=exc.message,
        status_code=exc.status_code,
        error=exc.error_code,
        details=exc.details or None
    )


def deleted_response(
    message: str = "Resource deleted successfully"
) -> JSONResponse:
    """Create a 200 OK response for deletions."""
    return success_response(
        message=message,
        status_code=200
    )


def not_found_response(
    resource: str = "Resource",
    identifier: Optional[str] = None
) -> JSONResponse:
    """
    Create a 404 Not Found response.

    Args:
        resource: Resource type
        identifier: Resource identifier

    Returns:
        JSONResponse: Not found response
    """
    message = f"{resource} not found"
    if identifier:
        message += f" with identifier: {identifier}"

    return error_response(
        message=message,
        status_code=404,
        error="not_found",
        details={"resource": resource, "identifier": identifier}
    )


def unauthorized_response(
    message: str = "Authentication required"
) -> JSONResponse:
    """Create a 401 Unauthorized response."""
    return error_response(
        message=message,
        status_code=401,
        error="unauthorized"
    )


def internal_error_response(
    message: str = "Internal server error"
) -> JSONResponse:
    """
    Create a 500 Internal Server Error response.

    Internal details never go into the body; log them before calling this.
    """
    logger.error("Internal server error", message=message)

    return error_response(
        message=message,
        status_code=500,
        error="internal_error"
    )
