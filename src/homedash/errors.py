"""
Error types for the home dashboard server.

This module defines the ToolError base class and subclasses for domain errors.
Procedure handlers and services raise these instead of building JSON-RPC error
objects directly; the protocol layer maps each error_code to a JSON-RPC code.
"""

from __future__ import annotations

from typing import Any


class ToolError(Exception):
    """
    Base exception class for procedure errors.

    ToolError instances are caught at the entry layer and mapped to JSON-RPC
    errors. Only error_code, message and details ever reach the client; a
    chained ``__cause__`` is kept for logging.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "not_found", "unavailable", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., parameter values).

    Example:
        >>> raise ToolError(
        ...     error_code="not_found",
        ...     message="Todo with id 7 not found",
        ...     details={"id": "7"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a ToolError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ToolError):
    """
    Error raised when a procedure receives invalid input.

    Maps to the "invalid_argument" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class NotFoundError(ToolError):
    """
    Error raised when a requested entity does not exist.

    Maps to the "not_found" error code. Used for unknown todo ids and unknown
    procedure names.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a NotFoundError."""
        super().__init__(error_code="not_found", message=message, details=details)


class UnavailableError(ToolError):
    """
    Error raised when a required collaborator is switched off or unreachable.

    Maps to the "unavailable" error code (e.g., the player is disabled in
    configuration).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class InternalError(ToolError):
    """
    Error raised for failures inside a service.

    Maps to the "internal" error code. The original exception should be
    chained with ``raise InternalError(...) from exc`` so it is available for
    logging; it is never serialized to the client.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
