"""
Error taxonomy for environment lifecycle operations.
"""

from typing import Optional


class ClusternatorError(Exception):
    """Base class for all clusternator errors."""


class PreconditionError(ClusternatorError):
    """Required input is missing or malformed; raised before any remote call."""


class ConflictError(ClusternatorError):
    """A tagged resource for the requested key already exists."""


class NotFoundError(ClusternatorError):
    """No tagged resource matches the requested key."""


class RemoteError(ClusternatorError):
    """The AWS API rejected or failed a request."""

    def __init__(self, message: str, code: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.operation = operation

    def __str__(self) -> str:
        base = super().__str__()
        if self.operation and self.code:
            return f"{self.operation} failed ({self.code}): {base}"
        if self.operation:
            return f"{self.operation} failed: {base}"
        return base
