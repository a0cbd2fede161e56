"""
Error taxonomy and the discriminated result returned by every engine operation.

Operations raise a WorkflowError subclass internally; the
`service_operation` decorator turns it into a failed ServiceResult so callers
never have to catch anything. Exceptions outside the taxonomy are logged and
re-raised untouched.
"""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for every failure the engine reports to its caller."""

    kind = "internal"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(WorkflowError):
    kind = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)


class Forbidden(WorkflowError):
    kind = "forbidden"


class NotFound(WorkflowError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        detail = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(detail)
        self.entity = entity


class Conflict(WorkflowError):
    kind = "conflict"


class AlreadyResolved(Conflict):
    kind = "already_resolved"


class InvalidTransition(WorkflowError):
    kind = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class CapacityExceeded(WorkflowError):
    kind = "capacity_exceeded"


class ServiceUnavailable(WorkflowError):
    kind = "service_unavailable"


@dataclass
class ErrorInfo:
    kind: str
    message: str
    field: Optional[str] = None


@dataclass
class ServiceResult:
    """Success payload or typed failure. Check `success` before reading `data`."""

    success: bool
    data: Any = None
    message: Optional[str] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ServiceResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, exc: WorkflowError) -> "ServiceResult":
        return cls(
            success=False,
            error=ErrorInfo(kind=exc.kind, message=exc.message, field=exc.field),
        )

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None


def service_operation(name: str) -> Callable:
    """
    Decorator for public engine operations.

    The wrapped function returns its payload (or a ServiceResult) on success
    and raises WorkflowError on failure.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> ServiceResult:
            try:
                outcome = func(*args, **kwargs)
            except WorkflowError as exc:
                logger.warning("%s failed (%s): %s", name, exc.kind, exc.message)
                return ServiceResult.fail(exc)
            except Exception:
                logger.exception("%s raised an unexpected error", name)
                raise
            if isinstance(outcome, ServiceResult):
                return outcome
            return ServiceResult.ok(outcome)

        return wrapper

    return decorator
