"""Exceptions raised by the ticket sync components."""
from typing import Optional


class TicketSyncError(Exception):
    """Base class for ticket sync failures."""


class AuthError(TicketSyncError):
    """Login returned no session token, or re-authentication was exhausted."""


class FetchError(TicketSyncError):
    """HTTP request to the ticketing API failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ParseError(TicketSyncError):
    """Response body is not a usable XML document."""


class ConfigError(TicketSyncError):
    """Configuration value is missing or invalid."""
