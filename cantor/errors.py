"""
Error taxonomy for Cantor.

Every error carries the HTTP status the edge should answer with, so the
FastAPI layer can translate them with a single exception handler.
"""

from __future__ import annotations


class CantorError(Exception):
    """Base class for request-terminal errors."""
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(CantorError):
    status_code = 400


class MissingMessage(ValidationError):
    def __init__(self, message: str = "Missing message"):
        super().__init__(message)


class UpstreamModelError(CantorError):
    """The language-model call failed. `details` holds the raw failure text."""
    status_code = 502

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class MethodNotAllowed(CantorError):
    status_code = 405

    def __init__(self, message: str = "Method not allowed"):
        super().__init__(message)


class NotFound(CantorError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)
