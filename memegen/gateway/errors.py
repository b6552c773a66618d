"""Caller-facing error taxonomy.

Only validation, policy rejection and admission timeout carry specific
messages. Everything else reaching the caller is GenerationFailedError.
"""

from __future__ import annotations


class MemeError(Exception):
    """Base class for errors surfaced to API callers."""

    default_message = "Request failed"
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class KeywordValidationError(MemeError):
    """Bad keyword shape (empty, too long) or bad request parameters."""

    default_message = "Invalid keyword"


class UnknownBackendError(KeywordValidationError):
    """A pinned backend id that has no profile."""

    def __init__(self, backend_id: str):
        self.backend_id = backend_id
        super().__init__(f"Unknown model: {backend_id}")


class PolicyRejectedError(MemeError):
    """Input contains a forbidden term."""

    default_message = "Input contains forbidden content, please revise and try again"


class AdmissionTimeoutError(MemeError):
    """Queued admission expired before a slot freed up."""

    default_message = "Request timed out, please try again later"
    retryable = True


class GenerationFailedError(MemeError):
    """Generic failure; the underlying cause is only logged."""

    default_message = "Generation failed, please try again later"


class ProviderError(Exception):
    """Raised by a generation backend on transport or payload failure.

    Internal only: the pipeline converts it to GenerationFailedError.
    """

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code
