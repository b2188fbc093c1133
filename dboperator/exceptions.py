"""
Exception hierarchy for the database controller.

Every error carries a stable ``reason`` code. Reason codes end up in status
conditions and are what clients match on; messages are for humans.
"""
from typing import Any, Dict, List, Optional


class DBOperatorException(Exception):
    """Base exception for all controller errors."""

    reason = "InternalError"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(DBOperatorException):
    """Raised when a Database spec violates an invariant."""

    reason = "ValidationFailed"

    def __init__(self, problems: List[str], reason: Optional[str] = None):
        self.problems = list(problems)
        super().__init__(
            message="; ".join(self.problems),
            reason=reason,
            details={"problems": self.problems},
        )


class UnimplementedBackendError(DBOperatorException):
    """Raised when no engine is registered for a technology."""

    reason = "UnimplementedBackend"

    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(
            message=f"{engine} engine not yet implemented",
            details={"engine": engine},
        )


class OperationNotImplementedError(DBOperatorException):
    """Raised when an engine does not implement a lifecycle operation."""

    reason = "OperationNotImplemented"

    def __init__(self, engine: str, operation: str):
        self.engine = engine
        self.operation = operation
        super().__init__(
            message=f"{operation} not yet implemented for {engine}",
            details={"engine": engine, "operation": operation},
        )


class PlatformError(DBOperatorException):
    """Raised when a platform (Kubernetes API) call fails."""

    reason = "PlatformError"

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        self.status = status
        super().__init__(message=message, details=details)


class TransientPlatformError(PlatformError):
    """Platform failure that is expected to go away on retry."""

    reason = "TransientPlatformError"


class ConflictError(TransientPlatformError):
    """Optimistic-concurrency conflict or already-exists on create."""

    reason = "Conflict"


class NotFoundError(TransientPlatformError):
    """Requested object does not exist."""

    reason = "NotFound"


class PlatformTimeoutError(TransientPlatformError):
    """Platform call timed out or was throttled."""

    reason = "PlatformTimeout"


class ExternalExecutionFailure(DBOperatorException):
    """An asynchronous execution unit reported failure."""

    reason = "ExecutionFailed"

    def __init__(self, unit_id: str, message: str, reason: Optional[str] = None):
        self.unit_id = unit_id
        super().__init__(message=message, reason=reason, details={"unit_id": unit_id})


class SecretStoreError(DBOperatorException):
    """Raised when the external secret store rejects a read or write."""

    reason = "SecretStoreError"


class RotationError(DBOperatorException):
    """Raised when the credential rotation state is inconsistent."""

    reason = "RotationError"


class InvalidPhaseTransitionError(DBOperatorException):
    """Raised when a phase transition is not allowed by the state machine."""

    reason = "InvalidPhaseTransition"


class ReconcileTimeoutError(DBOperatorException):
    """Raised when a reconciliation attempt exceeds its deadline."""

    reason = "ReconcileTimeout"
