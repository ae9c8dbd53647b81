from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(Enum):
    INVALID_PARAMS = "invalid_parameters"
    CKAN_API_ERROR = "ckan_api_error"
    NETWORK_ERROR = "network_error"
    PERMISSION_DENIED = "permission_denied"
    DATA_NOT_FOUND = "data_not_found"


def classify_error(exc: BaseException) -> ErrorType:
    """Map an exception message onto an ErrorType"""
    if isinstance(exc, DashboardError) and exc.error_type is not None:
        return exc.error_type

    text = str(exc).lower()
    if "not found" in text:
        return ErrorType.DATA_NOT_FOUND
    if "permission" in text or "unauthorized" in text or "not authorized" in text:
        return ErrorType.PERMISSION_DENIED
    if "network" in text or "connection" in text:
        return ErrorType.NETWORK_ERROR
    if "invalid" in text or "parameter" in text or "required" in text:
        return ErrorType.INVALID_PARAMS
    return ErrorType.CKAN_API_ERROR


class DashboardError(Exception):
    """Base class for errors surfaced to dashboard users"""

    error_type: Optional[ErrorType] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CKANAPIError(DashboardError):
    """CKAN answered with success: false"""

    def __init__(self, message: str, error: Optional[Dict[str, Any]] = None, status: int = 200):
        super().__init__(message)
        self.error = error or {}
        self.status = status


class CKANConnectionError(DashboardError):
    error_type = ErrorType.NETWORK_ERROR


class CSVParseError(DashboardError):
    error_type = ErrorType.INVALID_PARAMS


class ChartConfigError(DashboardError):
    error_type = ErrorType.INVALID_PARAMS


class MDXCompileError(DashboardError):
    error_type = ErrorType.INVALID_PARAMS

    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)
        self.line = line


class InvalidSlugError(DashboardError):
    error_type = ErrorType.INVALID_PARAMS


class StoryNotFoundError(DashboardError):
    error_type = ErrorType.DATA_NOT_FOUND
