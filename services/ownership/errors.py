"""Exceptions for the ownership pipeline.

Not-found and below-threshold outcomes are data, not exceptions. These cover
the cases that must unwind a stage: cancellation, an unusable model backend,
and a failed write to the system of record.
"""

from typing import Optional


class OwnershipPipelineError(Exception):
    """Base exception for pipeline failures."""

    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class RunCancelled(OwnershipPipelineError):
    """Cancellation was requested between two pipeline stages."""

    def __init__(self, message: str = "Run cancelled", details: Optional[dict] = None):
        super().__init__("RUN_CANCELLED", message, details)


class LLMUnavailable(OwnershipPipelineError):
    """The generative model is not configured or returned no usable reply."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM_UNAVAILABLE", message, details)


class SystemOfRecordError(OwnershipPipelineError):
    """A write to the system of record failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("SOR_WRITE_FAILED", message, details)
