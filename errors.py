from typing import Dict, Optional


class ErrorResponse(Exception):
    """Business error carrying an HTTP status and an optional per-field map."""

    def __init__(self, message: str, status_code: int, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors


def not_found(resource: str) -> ErrorResponse:
    return ErrorResponse(f"{resource} Not Found", 404)


def duplicate(field: str) -> ErrorResponse:
    return ErrorResponse(
        "Duplicate field value entered",
        400,
        {field: f"The {field} has already been taken"},
    )
