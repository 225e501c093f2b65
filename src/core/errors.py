"""
Error taxonomy for the copilot pipeline.

Everything fatal to a request derives from ``CopilotError`` so the HTTP
layer can map it to a status code.  ``NarrationIntegrityViolation`` is the
one recoverable member: the narration guard catches it and substitutes a
deterministic answer.
"""
from __future__ import annotations


class CopilotError(Exception):
    """Base class for all pipeline errors."""


class CapabilityDisabledError(CopilotError):
    """The language-model capability is not configured."""


class NoResponseError(CopilotError):
    """The language model returned empty content."""


class SchemaValidationError(CopilotError, ValueError):
    """A plan or an executor result failed structural validation.

    ``errors`` holds one message per violation; each names the offending
    field.
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        super().__init__("; ".join(self.errors))


class PlanParseError(SchemaValidationError):
    """The planner response could not be parsed as JSON."""


class DataSourceError(CopilotError):
    """The metric source could not serve a time-series request."""


class NarrationIntegrityViolation(CopilotError):
    """A narration cited numbers that are not present in the result."""

    def __init__(self, unsupported: list[str]):
        self.unsupported = unsupported
        super().__init__(
            f"Narration cites numbers absent from the result: {', '.join(unsupported)}"
        )


class RequestTimeoutError(CopilotError):
    """The end-to-end request budget elapsed."""
