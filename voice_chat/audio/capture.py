"""Microphone capture to a WAV file with live amplitude metering."""

import asyncio
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import sounddevice as sd
import soundfile as sf
import structlog

from ..config.settings import DEFAULT_SCRATCH_DIR
from ..errors import (
    CaptureFailedError,
    CaptureSetupError,
    NoActiveCaptureError,
    PermissionDeniedError,
)
from .recording import Recording
from .levels import AudioLevelTrace, DEFAULT_CAPACITY, SILENCE_DB, normalize_level, rms_to_db


logger = structlog.get_logger()


class AudioCapture:
    """
    Records microphone input with sounddevice.

    The PortAudio callback only appends frames and stores the latest dB
    reading. A sampling task on the event loop turns that reading into a
    normalized level every ``level_interval`` seconds.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 1,
        level_interval: float = 0.1,
        trace_capacity: int = DEFAULT_CAPACITY,
        scratch_dir: Optional[Union[str, Path]] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.level_interval = level_interval
        self.scratch_dir = Path(scratch_dir) if scratch_dir else DEFAULT_SCRATCH_DIR
        self.level_trace = AudioLevelTrace(trace_capacity)

        self._stream: Optional[sd.InputStream] = None
        self._frames: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._current_db = SILENCE_DB
        self._sampler: Optional[asyncio.Task] = None
        self._output_path: Optional[Path] = None
        self._permission_granted = False

    @property
    def is_capturing(self) -> bool:
        return self._stream is not None

    @property
    def levels(self) -> List[float]:
        """Snapshot of the amplitude trace."""
        return self.level_trace.snapshot()

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Input stream callback (PortAudio thread)."""
        if status:
            logger.warning("Audio input status", status=str(status))
        block = indata.copy()
        with self._lock:
            self._frames.append(block)
        self._current_db = rms_to_db(block)

    async def request_permission(self) -> bool:
        """Check that an input device can be opened. Never raises."""
        if self._permission_granted:
            return True

        try:
            device = await asyncio.to_thread(sd.query_devices, kind="input")
        except Exception as e:
            logger.warning("Microphone unavailable", error=str(e))
            return False

        granted = bool(device) and device.get("max_input_channels", 0) > 0
        if granted:
            self._permission_granted = True
            logger.debug("Microphone available", device=device.get("name"))
        else:
            logger.warning("No input channels on default device")
        return granted

    async def begin_capture(self) -> Path:
        """
        Start recording into a new scratch file.

        Returns:
            Path the recording will be written to

        Raises:
            PermissionDeniedError: No usable input device
            CaptureSetupError: A capture is already active or the stream failed to open
        """
        if self.is_capturing:
            raise CaptureSetupError("A recording is already in progress")

        if not await self.request_permission():
            raise PermissionDeniedError()

        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CaptureSetupError(f"Failed to create scratch directory: {e}") from e

        output_path = self.scratch_dir / f"{uuid.uuid4()}.wav"
        with self._lock:
            self._frames = []
        self._current_db = SILENCE_DB
        self.level_trace.clear()

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            logger.error("Failed to open input stream", error=str(e))
            raise CaptureSetupError(f"Failed to set up audio recording: {e}") from e

        self._stream = stream
        self._output_path = output_path
        self._sampler = asyncio.get_running_loop().create_task(self._sample_levels())

        logger.info("Recording started", path=str(output_path), sample_rate=self.sample_rate)
        return output_path

    async def _sample_levels(self) -> None:
        while True:
            await asyncio.sleep(self.level_interval)
            self.level_trace.push(normalize_level(self._current_db))

    def _stop_stream(self) -> List[np.ndarray]:
        if self._sampler is not None:
            self._sampler.cancel()
            self._sampler = None

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.warning("Error closing input stream", error=str(e))

        with self._lock:
            frames, self._frames = self._frames, []
        return frames

    async def end_capture(self) -> Recording:
        """
        Stop recording and write the captured audio.

        Returns:
            The finished Recording; its path is None if nothing was captured

        Raises:
            NoActiveCaptureError: No capture in progress
            CaptureFailedError: The WAV file could not be written
        """
        if not self.is_capturing:
            raise NoActiveCaptureError()

        frames = self._stop_stream()
        path, self._output_path = self._output_path, None
        levels = self.level_trace.snapshot()

        if not frames:
            logger.warning("Recording captured no audio")
            return Recording(path=None, levels=levels, sample_rate=self.sample_rate)

        audio = np.concatenate(frames)
        try:
            await asyncio.to_thread(sf.write, str(path), audio, self.sample_rate, subtype="PCM_16")
        except (RuntimeError, OSError) as e:
            try:
                path.unlink(missing_ok=True)
            except OSError as unlink_error:
                logger.warning("Failed to remove partial recording", path=str(path), error=str(unlink_error))
            raise CaptureFailedError(f"Failed to save audio recording: {e}") from e

        duration = len(audio) / self.sample_rate
        logger.info("Recording finished", path=str(path), duration_seconds=round(duration, 2))
        return Recording(
            path=path,
            levels=levels,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
        )

    def discard_capture(self) -> None:
        """Abort an active capture without writing anything."""
        if not self.is_capturing:
            return
        self._stop_stream()
        self._output_path = None
        logger.info("Recording discarded")
