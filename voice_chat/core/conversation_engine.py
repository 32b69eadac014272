"""
Conversation engine: the state machine behind a voice chat session.

A turn is either a voice turn (capture -> transcribe -> complete ->
synthesize -> play) or a text turn (complete -> synthesize -> play). Only one
turn runs at a time; every component failure ends the turn in
``Failed(reason)`` and the next turn starts from scratch.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Tuple, TypeVar
import structlog

from ..config.settings import Settings, settings as default_settings
from ..errors import NoActiveCaptureError, PlaybackError, VoiceChatError
from ..metrics.collector import MetricsCollector
from ..state.conversation_log import ConversationLog, Message, Originator


logger = structlog.get_logger()

T = TypeVar("T")


class EngineState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineStatus:
    """Current engine state; ``reason`` is set only for FAILED."""

    state: EngineState
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "EngineStatus":
        return cls(EngineState.IDLE)

    @classmethod
    def recording(cls) -> "EngineStatus":
        return cls(EngineState.RECORDING)

    @classmethod
    def processing(cls) -> "EngineStatus":
        return cls(EngineState.PROCESSING)

    @classmethod
    def failed(cls, reason: str) -> "EngineStatus":
        return cls(EngineState.FAILED, reason)

    @property
    def is_failed(self) -> bool:
        return self.state is EngineState.FAILED

    def __str__(self) -> str:
        if self.reason:
            return f"{self.state.value}: {self.reason}"
        return self.state.value


@dataclass(frozen=True)
class EngineSnapshot:
    """Point-in-time copy of the observable engine state."""

    status: EngineStatus
    messages: Tuple[Message, ...]


Subscriber = Callable[[EngineSnapshot], None]


class ConversationEngine:
    """
    Sequences capture, transcription, completion, synthesis and playback.

    All methods must be called from the event loop that owns the engine.
    Turn-start calls made while a turn is in progress are ignored and
    return False.

    ``capture`` may be None for text-only use, and ``playback`` may be None
    to skip speaking replies.
    """

    def __init__(self, client, capture, playback, metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.capture = capture
        self.playback = playback
        self.metrics = metrics
        self.log = ConversationLog()
        self.last_playback_error: Optional[PlaybackError] = None
        self.playback_finished: Optional[asyncio.Future] = None

        self._status = EngineStatus.idle()
        self._subscribers: List[Subscriber] = []
        self._turn_task: Optional[asyncio.Task] = None
        self._turn_pending = False
        self._cancel_requested = False
        self._active_recording = None
        self._turn_started_at: Optional[float] = None
        self._stage = "capture"

    @classmethod
    def create(
        cls,
        api_key: str,
        settings: Optional[Settings] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "ConversationEngine":
        """Wire an engine to the real microphone, speakers and remote API."""
        # Imported here so the engine can be used without an audio backend
        from ..audio.capture import AudioCapture
        from ..audio.playback import AudioPlayback
        from ..providers.remote_speech import RemoteSpeechClient

        settings = settings or default_settings
        client = RemoteSpeechClient.from_settings(api_key, settings)
        capture = AudioCapture(
            sample_rate=settings.audio.sample_rate,
            channels=settings.audio.channels,
            level_interval=settings.audio.level_interval,
            trace_capacity=settings.audio.level_capacity,
            scratch_dir=settings.audio.scratch_dir,
        )
        playback = AudioPlayback(poll_interval=settings.audio.playback_poll_interval)
        return cls(client, capture, playback, metrics=metrics)

    # Observable state

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.log.snapshot()

    @property
    def audio_levels(self) -> List[float]:
        if self.capture is None:
            return []
        return self.capture.levels

    @property
    def is_busy(self) -> bool:
        return (
            self._turn_pending
            or self._turn_task is not None
            or self._status.state in (EngineState.RECORDING, EngineState.PROCESSING)
        )

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(status=self._status, messages=self.log.snapshot())

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with a snapshot after every change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Engine subscriber raised")

    def _set_status(self, status: EngineStatus) -> None:
        if status == self._status:
            return
        previous, self._status = self._status, status
        logger.info("Engine status changed", previous=str(previous), current=str(status))
        self._notify()

    def _append(self, message: Message) -> None:
        self.log.append(message)
        logger.debug("Message appended", role=message.originator.value, length=len(message.content))
        self._notify()

    def _fail(self, reason: str) -> None:
        logger.warning("Turn failed", stage=self._stage, reason=reason)
        if self.metrics:
            self.metrics.record_error(self._stage, reason)
        self._set_status(EngineStatus.failed(reason))

    def _can_start_turn(self) -> bool:
        if self.is_busy:
            logger.warning("Ignoring turn start, a turn is already in progress", status=str(self._status))
            return False
        return True

    # Turn entry points

    async def start_voice_turn(self) -> bool:
        """Start recording the user's voice (Idle or Failed -> Recording)."""
        if not self._can_start_turn():
            return False
        if self.capture is None:
            self._stage = "capture"
            self._fail("Audio capture is not available")
            return True

        self._turn_pending = True
        self._cancel_requested = False
        self._stage = "capture"
        try:
            await self.capture.begin_capture()
        except asyncio.CancelledError:
            self._abandon_turn()
            raise
        except VoiceChatError as e:
            self._fail(str(e))
            return True
        except Exception as e:
            logger.exception("Unexpected capture error")
            self._fail(f"Unexpected error: {e}")
            return True
        finally:
            self._turn_pending = False

        if self._cancel_requested:
            self.capture.discard_capture()
            return True

        self._turn_started_at = time.time()
        self._set_status(EngineStatus.recording())
        return True

    async def stop_voice_turn(self) -> bool:
        """Stop recording and run the voice pipeline (Recording -> Processing -> Idle)."""
        if self._status.state is not EngineState.RECORDING or self._turn_pending:
            logger.warning("Ignoring stop, no recording in progress", status=str(self._status))
            return False

        self._turn_pending = True
        self._cancel_requested = False
        self._stage = "capture"
        try:
            recording = await self.capture.end_capture()
        except asyncio.CancelledError:
            self._abandon_turn()
            raise
        except NoActiveCaptureError:
            recording = None
        except VoiceChatError as e:
            self._fail(str(e))
            return True
        except Exception as e:
            logger.exception("Unexpected capture error")
            self._fail(f"Unexpected error: {e}")
            return True
        finally:
            self._turn_pending = False

        if self._cancel_requested:
            if recording is not None:
                recording.discard()
            return True
        if recording is None or recording.is_empty:
            self._fail("No recording found")
            return True

        self._active_recording = recording
        return await self._run_turn(self._voice_pipeline(recording))

    async def send_text_turn(self, text: str) -> bool:
        """
        Send typed text (Idle or Failed -> Processing -> Idle).

        Empty or whitespace-only text is ignored: nothing is appended, the
        status is unchanged and False is returned.
        """
        if not text or not text.strip():
            return False
        if not self._can_start_turn():
            return False

        self._turn_started_at = time.time()
        self._append(Message(content=text, originator=Originator.USER))
        return await self._run_turn(self._text_pipeline(text))

    async def _run_turn(self, pipeline: Coroutine[Any, Any, None]) -> bool:
        self._cancel_requested = False
        self._set_status(EngineStatus.processing())
        task = asyncio.get_running_loop().create_task(pipeline)
        self._turn_task = task
        try:
            await task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                # The caller was cancelled; leave the engine ready for the next turn
                self._abandon_turn()
                raise
        finally:
            if self._turn_task is task:
                self._turn_task = None
        return True

    # Pipelines

    async def _voice_pipeline(self, recording) -> None:
        try:
            try:
                transcript = await self._timed("stt", self.client.transcribe(recording.path))
            finally:
                self._release_recording()

            if not transcript.strip():
                self._fail("No speech detected in recording")
                return

            self._append(Message(content=transcript, originator=Originator.USER))
            await self._respond(transcript)
        except VoiceChatError as e:
            self._fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error in voice pipeline")
            self._fail(f"Unexpected error: {e}")

    async def _text_pipeline(self, text: str) -> None:
        try:
            await self._respond(text)
        except VoiceChatError as e:
            self._fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error in text pipeline")
            self._fail(f"Unexpected error: {e}")

    async def _respond(self, prompt: str) -> None:
        reply = await self._timed("ai", self.client.complete(prompt))
        speech = await self._timed("tts", self.client.synthesize_speech(reply))

        message = Message(content=reply, originator=Originator.ASSISTANT)
        message.attach_audio(speech)
        self._append(message)

        if self.playback is not None:
            self._stage = "playback"
            self.playback_finished = await self.playback.play(speech)

        if self.metrics:
            if self._turn_started_at is not None:
                self.metrics.record_latency("e2e", (time.time() - self._turn_started_at) * 1000)
            self.metrics.record_interaction()
        self._set_status(EngineStatus.idle())

    async def _timed(self, stage: str, call: Awaitable[T]) -> T:
        self._stage = stage
        start_time = time.time()
        result = await call
        if self.metrics:
            self.metrics.record_latency(stage, (time.time() - start_time) * 1000)
        return result

    def _release_recording(self) -> None:
        if self._active_recording is not None:
            self._active_recording.discard()
            self._active_recording = None

    # Actions available outside a turn

    async def play_message_audio(self, message: Message) -> Optional[asyncio.Future]:
        """
        Replay a message's synthesized speech.

        Does not change the engine status. A failure is kept in
        ``last_playback_error`` and logged.

        Returns:
            Completion future, or None when nothing was played
        """
        if message.audio_ref is None or self.playback is None:
            return None

        try:
            finished = await self.playback.play(message.audio_ref)
        except PlaybackError as e:
            self.last_playback_error = e
            logger.warning("Failed to play message audio", message_id=message.id, error=str(e))
            if self.metrics:
                self.metrics.record_error("playback", str(e), {"message_id": message.id})
            return None

        self.last_playback_error = None
        return finished

    def acknowledge(self) -> None:
        """Clear a failure (Failed -> Idle)."""
        if self._status.is_failed:
            self._set_status(EngineStatus.idle())

    def clear(self) -> bool:
        """Empty the conversation log. Refused while a turn is processing."""
        if self._status.state is EngineState.PROCESSING or self._turn_task is not None:
            logger.warning("Ignoring clear while a turn is processing")
            return False

        cleared = self.log.snapshot()
        if self.playback is not None and self.playback.current is not None and any(
            m.audio_ref == self.playback.current for m in cleared
        ):
            self.playback.stop()
        self.log.clear()
        _delete_audio(cleared)

        logger.info("Conversation cleared", messages=len(cleared))
        self._notify()
        return True

    def cancel(self) -> bool:
        """
        Abandon the current turn.

        Discards an active capture or recording, cancels an in-flight
        pipeline and stops playback. Messages already appended are kept.

        Returns:
            True if there was a turn to cancel
        """
        self._cancel_requested = True
        return self._abandon_turn()

    def _abandon_turn(self) -> bool:
        # A turn still awaiting begin_capture/end_capture counts as in progress
        in_turn = self._status.state in (EngineState.RECORDING, EngineState.PROCESSING)
        abandoned = self._turn_pending or in_turn

        if self.capture is not None and self.capture.is_capturing:
            self.capture.discard_capture()
            abandoned = True
        if self._active_recording is not None:
            self._release_recording()
            abandoned = True

        if self._turn_task is not None and not self._turn_task.done():
            self._turn_task.cancel()
            abandoned = True

        if self.playback is not None:
            self.playback.stop()

        if abandoned:
            logger.info("Turn cancelled", status=str(self._status))
            if self.metrics:
                self.metrics.record_cancellation()
        if in_turn:
            self._set_status(EngineStatus.idle())
        return abandoned

    async def aclose(self) -> None:
        """Cancel any turn and release playback and HTTP resources."""
        self.cancel()
        if self.playback is not None:
            self.playback.close()
        await self.client.aclose()
        if self.metrics:
            self.metrics.end_session()


def _delete_audio(messages: Tuple[Message, ...]) -> None:
    for message in messages:
        if message.audio_ref is None:
            continue
        try:
            Path(message.audio_ref).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete message audio", path=str(message.audio_ref), error=str(e))
