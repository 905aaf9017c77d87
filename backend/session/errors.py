"""
Relay error kinds.

Every failure that can reach a client connection is one of these. The
message of each exception is for logs; the user-visible text sent to the
client comes from spec.ERR_* constants.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class NotConnectedError(RelayError):
    """
    Raised when an upstream operation is attempted while the Upstream
    Session is not CONNECTED.

    The session never reconnects on its own; the caller must call
    ensure_connected() first.
    """


class ConnectFailure(RelayError):
    """
    Raised when an upstream connect attempt fails.

    The session returns to DISCONNECTED and does not retry.
    """


class ConnectTimeout(ConnectFailure):
    """Raised when an upstream connect attempt exceeds its deadline."""


class InvalidAudioPayload(RelayError):
    """
    Raised when an upstream response payload is empty or malformed
    (not whole PCM16 samples, wrong role, incomplete item).
    """


class DeviceError(RelayError):
    """Raised when the local microphone or speaker fails."""
