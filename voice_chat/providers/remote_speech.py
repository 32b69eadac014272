"""
Client for the remote speech-to-text, chat completion and text-to-speech APIs.

Every call is a single attempt. Transport and HTTP outcomes are mapped onto
the RemoteError hierarchy the same way for all three operations.
"""

import asyncio
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from ..config.settings import DEFAULT_SCRATCH_DIR, SUPPORTED_VOICES, Settings
from ..errors import (
    AuthenticationFailedError,
    DecodingFailedError,
    InvalidResponseError,
    InvalidURLError,
    RateLimitExceededError,
    RequestFailedError,
    ServerError,
    UnknownRemoteError,
)


logger = structlog.get_logger()


DEFAULT_BASE_URL = "https://api.openai.com/v1"

AUDIO_MIME_TYPES = {
    ".wav": "audio/wav",
    ".m4a": "audio/m4a",
    ".mp3": "audio/mpeg",
    ".mp4": "audio/mp4",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
    ".flac": "audio/flac",
}


def raise_for_status(response: httpx.Response) -> None:
    """Raise the RemoteError matching a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 401:
        raise AuthenticationFailedError(status_code=status)
    if status == 429:
        raise RateLimitExceededError(status_code=status)
    if 500 <= status < 600:
        raise ServerError(status_code=status)
    raise UnknownRemoteError(
        f"Unexpected response status {status}: {error_detail(response)}",
        status_code=status,
    )


def error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an API error body."""
    try:
        return str(response.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return response.text[:200]


class RemoteSpeechClient:
    """
    Wraps the transcription, chat completion and speech synthesis endpoints.

    The API key is held for the lifetime of the client and sent as a bearer
    token on every request. Nothing is validated until the first call.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        chat_model: str = "gpt-3.5-turbo",
        max_tokens: int = 1024,
        transcription_model: str = "whisper-1",
        speech_model: str = "tts-1",
        voice: str = "alloy",
        timeout: float = 30.0,
        scratch_dir: Optional[Union[str, Path]] = None,
        system_prompt: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if voice not in SUPPORTED_VOICES:
            raise ValueError(
                f"Unknown voice '{voice}'. Available options: {', '.join(SUPPORTED_VOICES)}"
            )

        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.max_tokens = max_tokens
        self.transcription_model = transcription_model
        self.speech_model = speech_model
        self.voice = voice
        self.timeout = timeout
        self.scratch_dir = Path(scratch_dir) if scratch_dir else DEFAULT_SCRATCH_DIR
        self.system_prompt = system_prompt

        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, api_key: str, settings: Settings, **overrides: Any) -> "RemoteSpeechClient":
        """Build a client from application settings."""
        options: Dict[str, Any] = {
            "base_url": settings.api.base_url,
            "chat_model": settings.api.chat_model,
            "max_tokens": settings.api.max_tokens,
            "transcription_model": settings.api.transcription_model,
            "speech_model": settings.api.speech_model,
            "voice": settings.api.voice,
            "timeout": settings.timeouts.request_timeout,
            "scratch_dir": settings.audio.scratch_dir,
            "system_prompt": settings.system_prompts.default,
        }
        options.update(overrides)
        return cls(api_key, **options)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteSpeechClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _endpoint(self, path: str) -> httpx.URL:
        raw = f"{self.base_url}/{path}"
        try:
            url = httpx.URL(raw)
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise InvalidURLError(f"Invalid API endpoint URL: {raw}", cause=e) from e
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidURLError(f"Invalid API endpoint URL: {raw}")
        return url

    async def _post(self, operation: str, url: httpx.URL, **request_kwargs: Any) -> httpx.Response:
        start_time = time.time()
        try:
            response = await self._client.post(
                url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self.timeout,
                **request_kwargs,
            )
        except (httpx.RemoteProtocolError, httpx.DecodingError) as e:
            logger.error("Malformed response", operation=operation, error=str(e))
            raise InvalidResponseError(f"Invalid response from the remote service: {e}", cause=e) from e
        except httpx.UnsupportedProtocol as e:
            raise InvalidURLError(f"Invalid API endpoint URL: {url}", cause=e) from e
        except httpx.RequestError as e:
            logger.error("Request failed", operation=operation, error=str(e) or type(e).__name__)
            raise RequestFailedError(e) from e

        latency_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Remote call finished",
            operation=operation,
            status_code=response.status_code,
            latency_ms=round(latency_ms, 1),
        )

        if not response.is_success:
            logger.warning(
                "Remote call rejected",
                operation=operation,
                status_code=response.status_code,
                detail=error_detail(response),
            )
        raise_for_status(response)
        return response

    @staticmethod
    def _decode_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodingFailedError(e, status_code=response.status_code) from e

    async def transcribe(self, audio: Union[str, Path]) -> str:
        """
        Transcribe an audio file.

        Args:
            audio: Path to the recorded audio

        Returns:
            The transcribed text
        """
        url = self._endpoint("audio/transcriptions")
        path = Path(audio)
        try:
            audio_bytes = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise RequestFailedError(e, f"Failed to read audio file {path}: {e}") from e

        mime_type = AUDIO_MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")
        response = await self._post(
            "transcribe",
            url,
            files={"file": (path.name, audio_bytes, mime_type)},
            data={"model": self.transcription_model},
        )

        payload = self._decode_json(response)
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise DecodingFailedError(
                ValueError("response has no 'text' field"), status_code=response.status_code
            )
        logger.info("Transcription received", text_length=len(text))
        return text

    async def complete(self, prompt: str) -> str:
        """Send a single user prompt and return the first choice's content."""
        url = self._endpoint("chat/completions")

        messages: List[Dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await self._post(
            "complete",
            url,
            json={
                "model": self.chat_model,
                "messages": messages,
                "max_tokens": self.max_tokens,
            },
        )

        payload = self._decode_json(response)
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list):
            raise DecodingFailedError(
                ValueError("response has no 'choices' list"), status_code=response.status_code
            )
        if not choices:
            raise InvalidResponseError("The completion response contained no choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise DecodingFailedError(
                ValueError("first choice has no message content"),
                status_code=response.status_code,
            )
        logger.info("Completion received", model=self.chat_model, text_length=len(content))
        return content

    async def synthesize_speech(self, text: str) -> Path:
        """
        Convert text to speech.

        Returns:
            Path of a new MP3 file in the scratch directory
        """
        url = self._endpoint("audio/speech")
        response = await self._post(
            "synthesize",
            url,
            json={"model": self.speech_model, "input": text, "voice": self.voice},
        )

        if not response.content:
            raise InvalidResponseError("The speech response contained no audio")

        output_path = self.scratch_dir / f"{uuid.uuid4()}.mp3"
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(output_path.write_bytes, response.content)
        except OSError as e:
            raise RequestFailedError(e, f"Failed to save synthesized speech: {e}") from e

        logger.info("Speech synthesized", path=str(output_path), bytes=len(response.content))
        return output_path
