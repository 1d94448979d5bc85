"""Shared error types and the {message} response helpers"""

from fastapi.responses import JSONResponse, Response


class ApiError(Exception):
    """Raised when a request breaks a business rule; rendered as {"message": ...}"""

    def __init__(self, message: str, status_code: int = 422):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EntityNotFound(Exception):
    """Raised when a record does not exist or is not visible; rendered as a bare 404"""


class ModelValidationError(Exception):
    """Raised when a record fails field validation; rendered as {"errors": {...}}"""

    def __init__(self, errors: dict):
        super().__init__(str(errors))
        self.errors = errors


def respond_with_error(message: str, status_code: int = 422) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def respond_with_success(message: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def empty_response(status_code: int = 204) -> Response:
    return Response(status_code=status_code)
