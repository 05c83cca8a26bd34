"""Error taxonomy and result values passed between pipeline components."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConnectivityError(PipelineError):
    """Store or queue unreachable."""


class SchemaError(PipelineError):
    """Schema provisioning failed."""


class TransientPersistenceError(PipelineError):
    """A single record insert failed."""


class QueueTransportError(PipelineError):
    """Popping from or pushing to the queue failed."""


class RecordValidationError(PipelineError):
    """Payload cannot become a record (empty or too long)."""


class StartupError(PipelineError):
    """Startup gate failed under the fatal policy."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a gateway or queue call.

    Exactly one of ``value`` or ``error`` is meaningful: a result with no
    error is a success, and its ``value`` may legitimately be ``None``
    (an empty pop, for example).
    """
    value: Optional[T] = None
    error: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PipelineError) -> "Result[T]":
        return cls(error=error)
