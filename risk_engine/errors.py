"""
Risk Engine Errors

Exception taxonomy shared by the pipeline, the review workflow and the
API layer. The API maps these to HTTP status codes:

- InvalidDecision, SettingsValidationError -> 400
- ReviewNotFound -> 404
- ReviewAlreadyResolved -> 409

Everything else is handled inside the engine and never reaches a caller
as a 500 for a valid transaction.
"""

from typing import Optional


class RiskEngineError(Exception):
    """Base class for all risk engine errors."""
    pass


class AnalyzerDataUnavailable(RiskEngineError):
    """An analyzer could not obtain the data it needs."""

    def __init__(self, factor: str, reason: str):
        self.factor = factor
        self.reason = reason
        super().__init__(f"{factor}: {reason}")


class AnalysisPipelineFailure(RiskEngineError):
    """The analysis could not produce a trustworthy score."""
    pass


class InvalidDecision(RiskEngineError, ValueError):
    """A review decision outside {approve, reject} was submitted."""

    def __init__(self, decision: str):
        self.decision = decision
        super().__init__("Invalid decision. Must be 'approve' or 'reject'")


class ReviewNotFound(RiskEngineError):
    """No manual review entry exists with the given id."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Review entry not found: {entry_id}")


class ReviewAlreadyResolved(RiskEngineError):
    """The review entry has already left the pending state."""

    def __init__(self, entry_id: str, status: Optional[str] = None):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Review entry {entry_id} is already {status or 'resolved'}")


class PersistenceFailure(RiskEngineError):
    """A write to a store did not go through."""

    def __init__(self, store: str, reason: str):
        self.store = store
        self.reason = reason
        super().__init__(f"{store} store write failed: {reason}")


class ExternalSideEffectFailure(RiskEngineError):
    """A security action against an external collaborator failed."""

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"{action} failed: {reason}")


class SettingsValidationError(RiskEngineError, ValueError):
    """A risk policy update was rejected."""
    pass
