from __future__ import annotations


class PlanReviewError(Exception):
    """Base class for the errors raised by the plan review workflow."""


class EvaluationError(PlanReviewError):
    """Remote evaluation failed. Always recoverable through the local heuristic."""


class UploadError(PlanReviewError):
    """The PDF artifact or its plan record could not be persisted."""


class ValidationError(PlanReviewError):
    """The submission is incomplete. Raised before any side effect."""
