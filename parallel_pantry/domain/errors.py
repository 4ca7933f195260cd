from __future__ import annotations


class ReliefError(Exception):
    """Base class for relief payout errors."""


class ValidationError(ReliefError):
    """Client-correctable admission failure carrying a reason code."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class TransferError(ReliefError):
    """One transfer failed; isolated to its own lane."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class PersistenceError(ReliefError):
    pass


class ConfigurationError(ReliefError):
    pass


class ConcurrencyConflict(ReliefError):
    """A settlement round is already in flight."""
