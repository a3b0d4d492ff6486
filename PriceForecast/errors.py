"""Exception hierarchy shared by the training and prediction pipeline.

Input problems (:class:`InvalidInputError`, :class:`DegenerateDataError`,
:class:`InsufficientDataError`) derive from :class:`ValueError` and are
raised before any tensor is allocated. Runtime failures derive from
:class:`RuntimeError`. :class:`CancelledError` derives from neither; a
cancelled run is a terminal status, not a failure.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    #: job status a run ending with this error is reported as
    status = "error"


class InvalidInputError(PipelineError, ValueError):
    """Malformed or empty time series, or an invalid request parameter."""


class DegenerateDataError(PipelineError, ValueError):
    """The price series has zero variance and cannot be normalized."""


class InsufficientDataError(PipelineError, ValueError):
    """The series is too short for the requested window and horizon."""

    def __init__(self, message: str, required: Optional[int] = None, actual: Optional[int] = None):
        super().__init__(message)
        self.required = required
        self.actual = actual


class AlreadyRunningError(PipelineError, RuntimeError):
    """A job with the same fingerprint is already pending or training."""

    def __init__(self, fingerprint: str):
        super().__init__(f"A job for model '{fingerprint}' is already running")
        self.fingerprint = fingerprint


class CancelledError(PipelineError):
    """Cooperative cancellation was observed at a suspension point."""

    status = "cancelled"


class CheckpointIOError(PipelineError, RuntimeError):
    """A checkpoint could not be written, read or removed."""


class CheckpointNotFoundError(CheckpointIOError, LookupError):
    """No checkpoint exists for the requested fingerprint."""


class ModelRuntimeError(PipelineError, RuntimeError):
    """Forward/backward computation failed or produced non-finite values."""


__all__ = [
    "PipelineError",
    "InvalidInputError",
    "DegenerateDataError",
    "InsufficientDataError",
    "AlreadyRunningError",
    "CancelledError",
    "CheckpointIOError",
    "CheckpointNotFoundError",
    "ModelRuntimeError",
]
