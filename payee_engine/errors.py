"""
Exception hierarchy for the payee engine.

Oracle failures are split in two: transport problems (OracleError) degrade a
single payee to a retryable placeholder, while malformed structured output
(OracleResponseError) is surfaced to whoever asked for it.
"""

from typing import Optional


class PayeeEngineError(Exception):
    """Base class for all payee engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class ConfigError(PayeeEngineError):
    """Missing or invalid configuration, e.g. no oracle API key."""


class OracleError(PayeeEngineError):
    """The oracle could not be reached or the provider returned an error."""


class OracleResponseError(OracleError):
    """The oracle answered, but the answer is empty, unparseable or off-schema."""


class ClusterSplitError(OracleResponseError):
    """A cluster split does not partition the cluster's members."""


class NotFoundError(PayeeEngineError):
    """A suggestion or cluster group does not exist."""


class InvalidOperationError(PayeeEngineError):
    """A suggestion transition is not allowed in its current state."""
