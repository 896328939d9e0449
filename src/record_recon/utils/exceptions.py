"""Custom exceptions for the reconciliation engine."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class RecordLoadError(ReconciliationError):
    """Error loading records from a CSV source."""

    pass


class RunError(ReconciliationError):
    """
    A fatal error for one reconciliation run.

    Carries the batch and the phase the run was in so operators can tell
    where it stopped.
    """

    def __init__(
        self,
        message: str,
        batch_ref: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        self.batch_ref = batch_ref
        self.phase = phase
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.batch_ref is not None:
            context.append(f"batch={self.batch_ref}")
        if self.phase is not None:
            context.append(f"phase={self.phase}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class BatchNotFoundError(RunError):
    """The batch has no uploaded records."""

    pass


class ConcurrentRunConflictError(RunError):
    """Another run for the same batch is in progress. Safe to retry later."""

    pass


class RecordWriteConflictError(RunError):
    """Optimistic version check failed while updating a record."""

    def __init__(
        self,
        message: str,
        record_id: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        batch_ref: Optional[str] = None,
        phase: Optional[str] = None,
    ):
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(message, batch_ref=batch_ref, phase=phase)


class PersistenceFailureError(RunError):
    """The reconciliation result could not be saved."""

    pass


class InternalFailureError(RunError):
    """Unexpected failure during a run."""

    pass
