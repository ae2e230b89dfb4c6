"""
Exception taxonomy for the arbitrage monitor.

Every component raises one of these at its boundary so the monitor loop can
decide whether a failure skips a record, rejects an opportunity, or aborts
the whole cycle.
"""

from typing import Any, Dict, Optional


class ArbError(Exception):
    """Base class for all monitor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class ConfigError(ArbError):
    """Missing or malformed environment configuration."""


class SnapshotLoadError(ArbError):
    """The pool snapshot could not be read at all. Aborts the cycle."""


class DataError(ArbError):
    """A single pool record is malformed or incomplete. The record is skipped."""


class OracleError(ArbError):
    """Gas or native-asset price could not be resolved by any source. Aborts the cycle."""


class ValidationError(ArbError):
    """Live revalidation rejected an opportunity."""

    def __init__(self, message: str, reason, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.reason = reason


class ContractError(ValidationError):
    """Target contract is not deployed or does not answer."""


class SubmissionError(ArbError):
    """Signing or broadcasting the transaction failed."""


class RelayError(SubmissionError):
    """The private relay refused or failed to accept a bundle."""
