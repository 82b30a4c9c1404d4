"""Exception hierarchy for the notesgit undo engine.

All notesgit-specific exceptions inherit from NotesGitError. Best-effort
bookkeeping problems (snapshot capture, ledger writes) are not raised at
all; they travel as degradation strings on ExecutionOutcome.
"""

from typing import Any, Dict, Optional


class NotesGitError(Exception):
    """Base exception for all notesgit errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Catalog and capability errors
class CatalogError(NotesGitError):
    """Raised when the capability catalog is malformed or incomplete."""
    pass


class UnknownCapability(NotesGitError):
    """Raised when a capability name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Capability not found: {name}", {"capability": name})
        self.name = name


class InvalidCapabilityArguments(NotesGitError):
    """Raised when capability arguments fail validation."""

    def __init__(self, name: str, errors: Any):
        super().__init__(
            f"Invalid arguments for capability {name}",
            {"capability": name, "errors": errors},
        )
        self.name = name
        self.errors = errors


# Orchestration errors
class LoopExceeded(NotesGitError):
    """Raised when the orchestration loop hits its iteration cap."""

    def __init__(self, max_iterations: int, request_id: Optional[str] = None):
        super().__init__(
            f"Orchestration loop exceeded maximum iterations ({max_iterations})",
            {"max_iterations": max_iterations, "request_id": request_id},
        )
        self.max_iterations = max_iterations
        self.request_id = request_id


# Backend errors
class BackendError(NotesGitError):
    """Raised when a notes backend call fails.

    ``status_code`` is None when the request never got a response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 body: str = "", path: str = ""):
        super().__init__(message, {"path": path, "status_code": status_code})
        self.status_code = status_code
        self.body = body
        self.path = path

    @classmethod
    def from_status(cls, status_code: int, body: str, path: str = "") -> "BackendError":
        return cls(f"HTTP {status_code}: {body}", status_code=status_code, body=body, path=path)


# Revert errors
class RevertError(NotesGitError):
    """Base class for revert rejections."""

    def __init__(self, message: str, request_id: str):
        super().__init__(message, {"request_id": request_id})
        self.request_id = request_id


class RevertNotFound(RevertError):
    """Raised when no live action record exists for the request."""

    def __init__(self, request_id: str):
        super().__init__("Could not find action history for this request", request_id)


class RevertAlreadyDone(RevertError):
    """Raised when the request has already been reverted."""

    def __init__(self, request_id: str):
        super().__init__("This request has already been reverted", request_id)


class RevertInProgress(RevertError):
    """Raised when the owning run or another revert of the request has not finished."""

    def __init__(self, request_id: str):
        super().__init__("This request is still running and cannot be reverted yet", request_id)


class RevertNotAllowed(RevertError):
    """Raised when the request ended in the Failed state."""

    def __init__(self, request_id: str):
        super().__init__("This request failed and is not eligible for revert", request_id)
