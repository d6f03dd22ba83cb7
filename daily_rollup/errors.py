"""Pipeline error kinds.

Transient store errors are not retried in place; the next tick reruns the
whole stage.
"""

from __future__ import annotations

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

_CONFLICT_MARKERS = ("locked", "deadlock", "serializ", "could not serialize", "lock timeout")


class PipelineError(Exception):
    """Base class for every failure a stage can report."""


class StoreUnavailable(PipelineError):
    pass


class TransactionConflict(PipelineError):
    pass


class ComputationError(PipelineError):
    """A source row could not be projected (malformed input)."""


class SchedulerSkew(PipelineError):
    """A tick arrived while the stage was still running."""


class StageTimeout(PipelineError):
    pass


class UnknownStage(KeyError):
    pass


def translate_store_error(exc: SQLAlchemyError) -> PipelineError:
    msg = str(getattr(exc, "orig", exc)).lower()
    if isinstance(exc, IntegrityError):
        return TransactionConflict(f"write rejected by store: {msg}")
    if isinstance(exc, OperationalError) and any(m in msg for m in _CONFLICT_MARKERS):
        return TransactionConflict(f"transaction conflict: {msg}")
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return StoreUnavailable(f"store unavailable: {msg}")
    return StoreUnavailable(f"store error: {msg}")
