"""Exception hierarchy shared across pairbot."""

from __future__ import annotations


class PairbotError(Exception):
    """Base exception for pairbot errors."""


class SessionError(PairbotError):
    """Raised when a session operation fails."""


class SessionValidationError(SessionError):
    """Raised when caller input is rejected before any network or state effect.

    Examples:
    - Phone number is not 8-15 digits
    - Session id is missing or empty
    """


class PairingError(SessionError):
    """Raised when the remote service refuses to issue a pairing code."""


class TransportError(PairbotError):
    """Raised when the protocol bridge reports a failure."""


class TransportTimeoutError(TransportError):
    """Raised when a bridge call does not complete in time."""


class TransportClosedError(TransportError):
    """Raised when calling into a connection that is not (or no longer) open."""


class ProfilePhotoError(PairbotError):
    """Raised when a profile photo cannot be resolved or downloaded."""


class MediaFetchError(PairbotError):
    """Raised when downloading an image (menu image, profile photo) fails."""
