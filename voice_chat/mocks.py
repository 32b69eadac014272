"""
Mock components for exercising the conversation engine without a microphone,
speakers or network access.
"""

import asyncio
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

from .audio.recording import Recording
from .audio.levels import AudioLevelTrace
from .errors import NoActiveCaptureError, PermissionDeniedError, PlaybackError


class MockSpeechClient:
    """Remote client that returns canned transcripts and replies."""

    def __init__(self, scratch_dir: Optional[Union[str, Path]] = None, latency: float = 0.0):
        self.scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.mkdtemp(prefix="voice-chat-mock-"))
        self.latency = latency
        self.mock_transcripts = [
            "Hello, how are you today?",
            "What's the weather like?",
            "Tell me a joke.",
        ]
        self.mock_responses = [
            "I'm doing great, thank you for asking! How can I help you today?",
            "The weather is looking nice! It's a perfect day for a conversation.",
            "Here's a joke for you: Why don't scientists trust atoms? Because they make up everything!",
        ]
        self.transcript_index = 0
        self.response_index = 0
        # operation name -> exception raised on the next call
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self.failures[operation] = error

    async def _call(self, operation: str, argument) -> None:
        self.calls.append((operation, argument))
        if self.latency:
            await asyncio.sleep(self.latency)
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    async def transcribe(self, audio: Union[str, Path]) -> str:
        await self._call("transcribe", audio)
        text = self.mock_transcripts[self.transcript_index % len(self.mock_transcripts)]
        self.transcript_index += 1
        return text

    async def complete(self, prompt: str) -> str:
        await self._call("complete", prompt)
        text = self.mock_responses[self.response_index % len(self.mock_responses)]
        self.response_index += 1
        return text

    async def synthesize_speech(self, text: str) -> Path:
        await self._call("synthesize_speech", text)
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        path = self.scratch_dir / f"{uuid.uuid4()}.mp3"
        path.write_bytes(b"mock-audio")
        return path

    async def aclose(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "MockSpeechClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class MockAudioCapture:
    """Capture that "records" a short placeholder file."""

    def __init__(self, scratch_dir: Optional[Union[str, Path]] = None, permission_granted: bool = True):
        self.scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.mkdtemp(prefix="voice-chat-mock-"))
        self.permission_granted = permission_granted
        self.level_trace = AudioLevelTrace()
        # When True, end_capture returns a recording with no audio
        self.produce_empty = False
        self._path: Optional[Path] = None

    @property
    def is_capturing(self) -> bool:
        return self._path is not None

    @property
    def levels(self) -> List[float]:
        return self.level_trace.snapshot()

    async def request_permission(self) -> bool:
        return self.permission_granted

    async def begin_capture(self) -> Path:
        if not self.permission_granted:
            raise PermissionDeniedError()
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.scratch_dir / f"{uuid.uuid4()}.wav"
        self.level_trace.clear()
        for level in (0.2, 0.6, 0.4):
            self.level_trace.push(level)
        return self._path

    async def end_capture(self) -> Recording:
        if self._path is None:
            raise NoActiveCaptureError()
        path, self._path = self._path, None
        if self.produce_empty:
            return Recording(path=None, levels=self.levels)
        path.write_bytes(b"RIFF-mock")
        return Recording(path=path, levels=self.levels, duration_seconds=1.0)

    def discard_capture(self) -> None:
        self._path = None


class MockAudioPlayback:
    """Playback that records what it was asked to play."""

    def __init__(self, duration: float = 0.0):
        self.duration = duration
        self.played: List[Path] = []
        self.current: Optional[Path] = None
        self.fail_with: Optional[PlaybackError] = None
        self.closed = False
        self._finished: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_playing(self) -> bool:
        return self._finished is not None and not self._finished.done()

    async def play(self, resource: Union[str, Path]) -> asyncio.Future:
        self.stop()
        if self.fail_with is not None:
            raise self.fail_with

        path = Path(resource)
        self.played.append(path)
        self.current = path

        loop = asyncio.get_running_loop()
        finished = loop.create_future()
        self._finished = finished
        if self.duration > 0:
            self._timer = loop.call_later(self.duration, self._complete, finished, True)
        else:
            self._complete(finished, True)
        return finished

    def _complete(self, finished: asyncio.Future, result: bool) -> None:
        if not finished.done():
            finished.set_result(result)
        if finished is self._finished:
            self.current = None

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._finished is not None:
            self._complete(self._finished, False)

    def close(self) -> None:
        self.stop()
        self.closed = True
