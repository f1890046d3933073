"""Error taxonomy shared by the meeting pipeline stages."""
from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for every failure raised inside a pipeline stage."""

    retryable: bool = True
    http_status: int = 500


class NotFoundError(PipelineError):
    """A referenced meeting (or row) does not exist."""

    retryable = False
    http_status = 404


class InvalidStateError(PipelineError):
    """Precedent data or status required by a stage is missing."""

    retryable = False
    http_status = 409


class MissingAudioError(InvalidStateError):
    """The meeting has no stored audio reference."""


class NoTranscriptError(InvalidStateError):
    """Analysis was requested before any transcript segment exists."""


class InvalidTransitionError(InvalidStateError):
    """A status change that the transition table does not allow."""

    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"invalid status transition: {current} -> {target}")
        self.current = current
        self.target = target


class StatusConflictError(InvalidStateError):
    """Compare-and-swap on the meeting status lost against another writer."""


class UpstreamError(PipelineError):
    """The AI gateway failed or returned no usable content."""

    http_status = 502


class ParseError(PipelineError):
    """Gateway content could not be interpreted (never fatal for analysis)."""


class PersistenceError(PipelineError):
    """The store rejected a read or write."""


__all__ = [
    "PipelineError",
    "NotFoundError",
    "InvalidStateError",
    "MissingAudioError",
    "NoTranscriptError",
    "InvalidTransitionError",
    "StatusConflictError",
    "UpstreamError",
    "ParseError",
    "PersistenceError",
]
