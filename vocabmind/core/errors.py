"""
Error taxonomy shared by the search, indexing and scheduling layers.
"""

from enum import Enum
from typing import Optional


class VocabMindError(Exception):
    """Base class for all errors raised by the core."""


class ConfigurationError(VocabMindError):
    """Raised when the loaded configuration fails validation."""

    def __init__(self, issues):
        self.issues = list(issues)
        super().__init__(f"Invalid configuration: {self.issues}")


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"


TRANSIENT_KINDS = {ProviderErrorKind.RATE_LIMITED, ProviderErrorKind.UNAVAILABLE, ProviderErrorKind.TIMEOUT}


class ProviderError(VocabMindError):
    """Raised by an external provider implementation.

    The kind lets the resilience layer distinguish a rate limit or outage
    (retried, counted by the circuit breaker) from bad input (neither).
    """

    def __init__(self, message: str, kind: ProviderErrorKind = ProviderErrorKind.UNAVAILABLE):
        self.kind = ProviderErrorKind(kind)
        super().__init__(message)

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class ProviderUnavailable(VocabMindError):
    """A guarded capability could not produce a result (down, circuit open, timed out)."""

    def __init__(self, capability: str, reason: str, cause: Optional[BaseException] = None):
        self.capability = capability
        self.reason = reason
        self.cause = cause
        super().__init__(f"{capability} unavailable: {reason}")


class InvalidQuery(VocabMindError):
    """Malformed request input. Surfaced to the caller, never retried."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class IndexInconsistency(VocabMindError):
    """A vector of the wrong dimensionality was offered to an index."""

    def __init__(self, item_id: str, expected: int, actual: int):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension {actual} does not match expected dimension {expected} (item {item_id})"
        )


class TotalFailure(VocabMindError):
    """Both the vector and lexical retrieval paths failed for one request."""

    code = "SEARCH_TOTAL_FAILURE"

    def __init__(self, vector_error: Optional[BaseException], lexical_error: Optional[BaseException]):
        self.vector_error = vector_error
        self.lexical_error = lexical_error
        super().__init__(
            f"All search paths failed (vector: {vector_error!r}, lexical: {lexical_error!r})"
        )


class GraphIntegrityError(VocabMindError):
    """An edge violated the graph invariants (unknown endpoint, self-loop, weight range)."""
