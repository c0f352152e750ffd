"""Typed errors raised across the package.

Data-integrity problems on the read path (malformed entries, incomplete
chunk groups, undecodable payloads) are *not* represented here: they are
logged and counted, never raised.
"""

from __future__ import annotations


class TopicQuotaError(Exception):
    """Base class for every error raised by this package."""


class TransientNetworkError(TopicQuotaError):
    """Timeout, unreachable mirror node or non-2xx response. Safe to retry."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(TopicQuotaError):
    """Missing operator identity or token id. Fatal, never retried."""


class LedgerOperationError(TopicQuotaError):
    """A mutating ledger collaborator reported a non-success status."""

    def __init__(self, status: str, message: str | None = None) -> None:
        super().__init__(message or status)
        self.status = status


class InvalidTransitionError(TopicQuotaError):
    """A workflow step was invoked before its source step was reached."""


class ChunkGroupConsumedError(TopicQuotaError):
    """A chunk group was assembled more than once."""
