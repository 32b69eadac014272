"""Tests for microphone capture."""

import asyncio
import importlib
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

# Every test patches the audio libraries, so a host without PortAudio only
# needs the imports to succeed
for _module in ("sounddevice", "soundfile"):
    try:
        importlib.import_module(_module)
    except (ImportError, OSError):
        sys.modules[_module] = MagicMock()

from voice_chat.audio.capture import AudioCapture
from voice_chat.audio.levels import normalize_level
from voice_chat.errors import (
    CaptureFailedError,
    CaptureSetupError,
    NoActiveCaptureError,
    PermissionDeniedError,
)


INPUT_DEVICE = {"name": "Test Microphone", "max_input_channels": 1, "default_samplerate": 44100.0}


@pytest.fixture
def mock_sd():
    with patch("voice_chat.audio.capture.sd") as mock:
        mock.query_devices.return_value = INPUT_DEVICE
        mock.InputStream.return_value = MagicMock()
        yield mock


@pytest.fixture
def mock_sf():
    with patch("voice_chat.audio.capture.sf") as mock:
        yield mock


def tone(amplitude=0.5, frames=1024):
    return np.full((frames, 1), amplitude, dtype=np.float32)


class TestAudioCapture:
    """Test AudioCapture with sounddevice and soundfile mocked."""

    def test_begin_and_end_capture(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            path = await capture.begin_capture()
            assert capture.is_capturing
            capture._audio_callback(tone(), 1024, None, None)
            capture._audio_callback(tone(), 1024, None, None)
            recording = await capture.end_capture()
            return path, recording

        path, recording = asyncio.run(scenario())

        assert path.parent == tmp_path
        assert path.suffix == ".wav"
        assert recording.path == path
        assert recording.duration_seconds == pytest.approx(2048 / 44100)
        assert not capture.is_capturing

        mock_sd.InputStream.assert_called_once()
        kwargs = mock_sd.InputStream.call_args.kwargs
        assert kwargs["samplerate"] == 44100
        assert kwargs["channels"] == 1
        mock_sd.InputStream.return_value.start.assert_called_once()
        mock_sd.InputStream.return_value.stop.assert_called_once()

        args, kwargs = mock_sf.write.call_args
        assert args[0] == str(path)
        assert args[1].shape == (2048, 1)
        assert args[2] == 44100
        assert kwargs["subtype"] == "PCM_16"

    def test_levels_are_sampled(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path, level_interval=0.01)

        async def scenario():
            await capture.begin_capture()
            capture._audio_callback(tone(0.5), 1024, None, None)
            await asyncio.sleep(0.05)
            levels = capture.levels
            await capture.end_capture()
            return levels

        levels = asyncio.run(scenario())

        assert levels
        expected = normalize_level(20 * np.log10(0.5))
        assert levels[-1] == pytest.approx(expected, abs=1e-3)

    def test_level_trace_is_bounded(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path, level_interval=0.001, trace_capacity=5)

        async def scenario():
            await capture.begin_capture()
            await asyncio.sleep(0.05)
            levels = capture.levels
            capture.discard_capture()
            return levels

        assert len(asyncio.run(scenario())) <= 5

    def test_permission_denied_when_no_device(self, mock_sd, tmp_path):
        mock_sd.query_devices.side_effect = Exception("Error querying device -1")
        capture = AudioCapture(scratch_dir=tmp_path)

        with pytest.raises(PermissionDeniedError):
            asyncio.run(capture.begin_capture())
        assert not capture.is_capturing

    def test_permission_denied_without_input_channels(self, mock_sd, tmp_path):
        mock_sd.query_devices.return_value = {"name": "Speakers", "max_input_channels": 0}
        capture = AudioCapture(scratch_dir=tmp_path)

        assert asyncio.run(capture.request_permission()) is False

    def test_permission_is_cached(self, mock_sd, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            return await capture.request_permission(), await capture.request_permission()

        assert asyncio.run(scenario()) == (True, True)
        assert mock_sd.query_devices.call_count == 1

    def test_stream_setup_failure(self, mock_sd, tmp_path):
        mock_sd.InputStream.side_effect = Exception("Invalid sample rate")
        capture = AudioCapture(scratch_dir=tmp_path)

        with pytest.raises(CaptureSetupError):
            asyncio.run(capture.begin_capture())
        assert not capture.is_capturing

    def test_begin_twice(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            await capture.begin_capture()
            try:
                await capture.begin_capture()
            finally:
                capture.discard_capture()

        with pytest.raises(CaptureSetupError):
            asyncio.run(scenario())

    def test_end_without_begin(self, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        with pytest.raises(NoActiveCaptureError):
            asyncio.run(capture.end_capture())

    def test_end_with_no_audio(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            await capture.begin_capture()
            return await capture.end_capture()

        recording = asyncio.run(scenario())

        assert recording.is_empty
        mock_sf.write.assert_not_called()

    def test_write_failure(self, mock_sd, mock_sf, tmp_path):
        mock_sf.write.side_effect = RuntimeError("Error opening file")
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            await capture.begin_capture()
            capture._audio_callback(tone(), 1024, None, None)
            await capture.end_capture()

        with pytest.raises(CaptureFailedError):
            asyncio.run(scenario())
        assert not capture.is_capturing

    def test_write_failure_removes_partial_file(self, mock_sd, mock_sf, tmp_path):
        def write_partial(path, *args, **kwargs):
            Path(path).write_bytes(b"RIFF")
            raise RuntimeError("Disk full")

        mock_sf.write.side_effect = write_partial
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            await capture.begin_capture()
            capture._audio_callback(tone(), 1024, None, None)
            await capture.end_capture()

        with pytest.raises(CaptureFailedError):
            asyncio.run(scenario())
        assert list(tmp_path.glob("*.wav")) == []

    def test_discard_capture(self, mock_sd, mock_sf, tmp_path):
        capture = AudioCapture(scratch_dir=tmp_path)

        async def scenario():
            await capture.begin_capture()
            capture._audio_callback(tone(), 1024, None, None)
            capture.discard_capture()

        asyncio.run(scenario())

        assert not capture.is_capturing
        mock_sd.InputStream.return_value.close.assert_called_once()
        mock_sf.write.assert_not_called()
        capture.discard_capture()
