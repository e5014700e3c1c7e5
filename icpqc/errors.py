# icpqc/errors.py
"""
Exception types raised by the ingestion and reporting pipeline.

FormatError and ValidationError are raised before anything is persisted and
their messages are meant to be shown to the user as-is. TransactionError wraps
any other failure that happened while rows were being written or corrected.
"""

from typing import Any, Dict, Optional


class IcpqcError(Exception):
    """Base class for all icpqc errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return self.message


class FormatError(IcpqcError, ValueError):
    """The file is not one of the two supported instrument layouts."""


class ValidationError(IcpqcError, ValueError):
    """The file has a supported layout but its content is not acceptable."""


class TransactionError(IcpqcError, RuntimeError):
    """Writing or correcting an ingested run failed; everything was rolled back."""
