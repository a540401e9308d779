"""
Error taxonomy for the datec core.

Every fatal error carries a stable (kind, message) pair that callers can map
onto their own transport. Store adapters translate driver exceptions into
UpstreamStoreError (or ConflictError for uniqueness violations) so services
never see driver-specific types.
"""
from contextlib import contextmanager
from enum import Enum
from typing import Optional, Type, Tuple


class ErrorKind(str, Enum):
    """Stable error kinds exposed to callers"""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"
    INVALID_INPUT = "invalid_input"
    UPSTREAM_STORE_FAILURE = "upstream_store_failure"
    BEST_EFFORT_FAILURE = "best_effort_failure"


class DatecError(Exception):
    """Base class for all errors raised by the core."""

    kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFoundError(DatecError):
    """Entity is absent from the metadata store."""
    kind = ErrorKind.NOT_FOUND


class ConflictError(DatecError):
    """
    Uniqueness violation or entity already in the requested state.

    `retryable` is set for identifier collisions, where minting a fresh
    identifier and repeating the operation is the expected recovery.
    """
    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, constraint: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.constraint = constraint
        self.retryable = retryable


class ForbiddenError(DatecError):
    """Ownership or role check failed."""
    kind = ErrorKind.FORBIDDEN


class InvalidStateError(DatecError):
    """Operation is illegal for the entity's current state."""
    kind = ErrorKind.INVALID_STATE


class InvalidInputError(DatecError):
    """Business-level input check failed (file count, rating range, ...)."""
    kind = ErrorKind.INVALID_INPUT


class UpstreamStoreError(DatecError):
    """A required call to one of the four stores failed."""
    kind = ErrorKind.UPSTREAM_STORE_FAILURE

    def __init__(self, store: str, operation: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{store} store {operation} failed{detail}")
        self.store = store
        self.operation = operation
        self.cause = cause


class BestEffortFailure(DatecError):
    """
    Failure of a non-authoritative step.

    Only ever constructed for logging; it is never raised to callers.
    """
    kind = ErrorKind.BEST_EFFORT_FAILURE

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"best-effort step {step} failed: {cause}")
        self.step = step
        self.cause = cause


@contextmanager
def translate_store_errors(store: str, operation: str, error_types: Tuple[Type[BaseException], ...]):
    """Re-raise driver errors of `error_types` as UpstreamStoreError."""
    try:
        yield
    except DatecError:
        raise
    except error_types as exc:
        raise UpstreamStoreError(store, operation, exc) from exc
