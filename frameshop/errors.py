"""Exception hierarchy shared by the catalog, auth and pipeline layers."""
from __future__ import annotations

from typing import Any


class FrameshopError(Exception):
    """Base class for every error raised by this package."""


class AuthError(FrameshopError):
    pass


class AuthConfigError(AuthError):
    """Client credentials are not configured. Never retried."""


class AuthExchangeError(AuthError):
    """The client-credentials exchange failed or returned an unusable body."""


class ProtocolError(FrameshopError):
    pass


class ProtocolTransportError(ProtocolError):
    """Network failure or non-2xx response from the catalog endpoint."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolApplicationError(ProtocolError):
    """The tool-call envelope carried an ``error`` member."""

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.error = error


class ProtocolParseError(ProtocolError):
    """The backend returned a payload that is not valid JSON."""


class VisionError(FrameshopError):
    """Raised by vision collaborators when a frame cannot be analysed."""
