from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class OverviewError(Exception):
    """Base class for department overview failures."""


class StoreError(OverviewError):
    """A record store read or write failed."""

    def __init__(self, collection: str, operation: str, cause: BaseException | None = None):
        detail = f"{operation} on '{collection}' failed"
        if cause is not None:
            detail = f"{detail}: {cause.__class__.__name__}"
        super().__init__(detail)
        self.collection = collection
        self.operation = operation
        self.cause = cause


class StoreConflictError(StoreError):
    """The store rejected a write because of a uniqueness constraint."""


class DepartmentValidationError(OverviewError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class DuplicateDepartmentError(DepartmentValidationError):
    def __init__(self, name: str):
        super().__init__("DEPARTMENT_ALREADY_EXISTS", "Department with this name already exists.")
        self.name = name


class DepartmentOperationFailed(OverviewError):
    def __init__(self, code: str = "DEPARTMENT_CREATE_FAILED", message: str = "Failed to add department."):
        super().__init__(message)
        self.code = code
        self.message = message


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
