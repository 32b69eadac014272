"""Client for the remote speech and chat API."""

from .remote_speech import RemoteSpeechClient

__all__ = ["RemoteSpeechClient"]
