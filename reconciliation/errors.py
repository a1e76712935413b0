"""Error taxonomy for the reconciliation pipeline."""

from __future__ import annotations


class ProgressError(RuntimeError):
    """Base class for refresh-path and webhook failures."""


class NetworkError(ProgressError):
    """Raised when the passing manifest cannot be retrieved."""


class RepositoryError(ProgressError):
    """Raised when the test-suite checkout cannot be cloned or updated."""


class ParseError(ProgressError):
    """Raised when test-definition files cannot be read or contain malformed declarations."""


class StorageError(ProgressError):
    """Raised when a snapshot transaction fails."""


class AuthenticationError(ProgressError):
    """Raised when an inbound webhook signature does not verify."""
