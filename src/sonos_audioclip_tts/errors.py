"""Exception hierarchy for the audio clip bridge.

A missing or revoked authorization is not an error: it is reported through
``TokenManager.auth_required``. Everything here is recovered at the HTTP handler
boundary and turned into a ``{"success": false}`` response.
"""

from typing import Any


class BridgeError(Exception):
    """Base class for failures surfaced to HTTP callers.

    Attributes:
        detail: Best available diagnostic, passed through to the response body.
    """

    def __init__(self, detail: Any) -> None:
        super().__init__(str(detail))
        self.detail = detail


class AuthorizationExchangeFailed(BridgeError):
    """The authorization server rejected a code exchange or token refresh."""


class UpstreamTransportError(BridgeError):
    """The Control API could not be reached (connection error, timeout)."""


class UpstreamProtocolError(BridgeError):
    """The Control API answered without the expected fields, or not in JSON."""


class MissingParameterError(BridgeError):
    """A required query parameter was not supplied."""


class SpeechSynthesisError(BridgeError):
    """The text-to-speech provider failed to produce audio."""


class CredentialStoreError(BridgeError):
    """The persisted credential could not be read or written."""
