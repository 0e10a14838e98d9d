from __future__ import annotations


class ValidationError(ValueError):
    """Input rejected before any backend call was issued."""


class BackendError(RuntimeError):
    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.message = message


class NotFoundError(LookupError):
    """Record is missing or belongs to another user."""
