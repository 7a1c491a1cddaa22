"""
Errors raised by the oracle's chain collaborators.
"""

from typing import Optional

from spending_oracle.config import ConfigurationError


class OracleError(Exception):
    """Base exception for runner-level failures."""

    def __init__(self, message: str, sub_account: Optional[str] = None):
        self.message = message
        self.sub_account = sub_account
        super().__init__(message)


class ChainClientError(OracleError):
    """A contract read or log query failed after retries."""
    pass


class SubmissionError(OracleError):
    """A batchUpdate could not be signed or sent."""

    def __init__(self, message: str, sub_account: Optional[str] = None, tx_hash: Optional[str] = None):
        super().__init__(message, sub_account)
        self.tx_hash = tx_hash


__all__ = ["ChainClientError", "ConfigurationError", "OracleError", "SubmissionError"]
