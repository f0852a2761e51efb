"""Exception taxonomy shared by the orchestrator, store and fetch layers."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all intelli-tracker failures."""


class SourceNotReady(TrackerError):
    """The list source never became ready."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"List source not ready after {attempts} attempts")
        self.attempts = attempts


class DuplicateListing(TrackerError):
    """A listing was delivered more than once within the same run."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Listing already received for run {run_id}")
        self.run_id = run_id


class PerItemFetchFailure(TrackerError):
    """Detail fetch for a single item failed or never resolved."""

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Detail fetch failed for {item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


class AnnotationValidationError(TrackerError):
    """Annotation request rejected; the record was left untouched."""


class RecordNotFound(TrackerError, KeyError):
    """No record with the given ID exists in the store."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Record not found: {item_id}")
        self.item_id = item_id

    def __str__(self) -> str:
        return self.args[0]


__all__ = [
    "AnnotationValidationError",
    "DuplicateListing",
    "PerItemFetchFailure",
    "RecordNotFound",
    "SourceNotReady",
    "TrackerError",
]
