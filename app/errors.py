"""
Error taxonomy for the violation engine.

None of these may escape to the ingestion caller except as a boolean
rejection; they exist so failures are classified consistently in logs
and the audit trail.
"""

from __future__ import annotations


class ExamGuardError(Exception):
    """Base class for engine errors."""


class InputError(ExamGuardError):
    """Malformed event rejected at ingestion. No score is produced."""


class CalculationError(ExamGuardError):
    """Internal fault while scoring. Recovered with a conservative default score."""


class CollaboratorError(ExamGuardError):
    """An evidence, report or audit collaborator failed."""

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class CapacityError(ExamGuardError):
    """Queue depth exceeded its configured bound. Raised as an alert, events are kept."""

    def __init__(self, depth: int, max_depth: int) -> None:
        super().__init__(f"Queue depth {depth} exceeds bound {max_depth}")
        self.depth = depth
        self.max_depth = max_depth
