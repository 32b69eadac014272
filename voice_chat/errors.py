"""Error types raised by the voice chat components."""

from enum import Enum
from typing import Optional


class VoiceChatError(Exception):
    """Base class for every error the voice chat components raise."""


# Audio capture


class AudioCaptureError(VoiceChatError):
    """Raised when microphone capture cannot start or finish."""


class PermissionDeniedError(AudioCaptureError):
    """Microphone access was denied or no input device is available."""

    def __init__(self, message: str = "Microphone permission denied"):
        super().__init__(message)


class CaptureSetupError(AudioCaptureError):
    """The input stream or output file could not be set up."""

    def __init__(self, message: str = "Failed to set up audio recording"):
        super().__init__(message)


class CaptureFailedError(AudioCaptureError):
    """Captured audio could not be written to its output file."""

    def __init__(self, message: str = "Failed to save audio recording"):
        super().__init__(message)


class NoActiveCaptureError(AudioCaptureError):
    """end_capture() was called without a capture in progress."""

    def __init__(self, message: str = "No recording in progress"):
        super().__init__(message)


# Audio playback


class PlaybackError(VoiceChatError):
    """An audio resource could not be played."""

    def __init__(self, message: str = "Failed to play audio"):
        super().__init__(message)


# Remote API


class RemoteErrorKind(Enum):
    """Classification of a failed remote API call."""

    INVALID_URL = "invalid_url"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"
    DECODING_FAILED = "decoding_failed"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class RemoteError(VoiceChatError):
    """
    A remote API call failed.

    Attributes:
        kind: Classification of the failure
        status_code: HTTP status when a response was received
        cause: Underlying exception for transport and decoding failures
    """

    kind: RemoteErrorKind = RemoteErrorKind.UNKNOWN
    default_message = "The remote service returned an unexpected result"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message or self.default_message)
        self.status_code = status_code
        self.cause = cause


class InvalidURLError(RemoteError):
    kind = RemoteErrorKind.INVALID_URL
    default_message = "Invalid API endpoint URL"


class RequestFailedError(RemoteError):
    kind = RemoteErrorKind.REQUEST_FAILED
    default_message = "Request to the remote service failed"

    def __init__(self, cause: BaseException, message: Optional[str] = None):
        super().__init__(message or f"{self.default_message}: {cause}", cause=cause)


class InvalidResponseError(RemoteError):
    kind = RemoteErrorKind.INVALID_RESPONSE
    default_message = "Invalid response from the remote service"


class DecodingFailedError(RemoteError):
    kind = RemoteErrorKind.DECODING_FAILED
    default_message = "Failed to decode the remote service response"

    def __init__(
        self,
        cause: BaseException,
        status_code: Optional[int] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"{self.default_message}: {cause}",
            status_code=status_code,
            cause=cause,
        )


class AuthenticationFailedError(RemoteError):
    kind = RemoteErrorKind.AUTHENTICATION_FAILED
    default_message = "Authentication failed, check your API key"


class RateLimitExceededError(RemoteError):
    kind = RemoteErrorKind.RATE_LIMIT_EXCEEDED
    default_message = "Rate limit exceeded, try again later"


class ServerError(RemoteError):
    kind = RemoteErrorKind.SERVER_ERROR
    default_message = "The remote service had an internal error"


class UnknownRemoteError(RemoteError):
    kind = RemoteErrorKind.UNKNOWN
