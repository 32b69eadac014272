"""Tests for pygame-backed playback."""

import asyncio
from unittest.mock import patch

import pytest

from voice_chat.audio.playback import AudioPlayback
from voice_chat.errors import PlaybackError


class FakePygameError(Exception):
    pass


@pytest.fixture
def mock_pygame():
    with patch("voice_chat.audio.playback.pygame") as mock:
        mock.error = FakePygameError
        mock.mixer.get_init.return_value = False
        mock.mixer.music.get_busy.return_value = False
        yield mock


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "reply.mp3"
    path.write_bytes(b"ID3-mp3")
    return path


class TestAudioPlayback:
    """Test AudioPlayback with the pygame mixer mocked."""

    def test_play_to_completion(self, mock_pygame, audio_file):
        playback = AudioPlayback(poll_interval=0.001)

        async def scenario():
            finished = await playback.play(audio_file)
            assert playback.current == audio_file
            return await asyncio.wait_for(finished, timeout=1)

        assert asyncio.run(scenario()) is True
        mock_pygame.mixer.init.assert_called_once()
        mock_pygame.mixer.music.load.assert_called_once_with(str(audio_file))
        mock_pygame.mixer.music.play.assert_called_once()
        assert playback.current is None

    def test_missing_file(self, mock_pygame, tmp_path):
        playback = AudioPlayback()

        with pytest.raises(PlaybackError, match="not found"):
            asyncio.run(playback.play(tmp_path / "missing.mp3"))
        mock_pygame.mixer.music.load.assert_not_called()

    def test_unplayable_file(self, mock_pygame, audio_file):
        mock_pygame.mixer.music.load.side_effect = FakePygameError("Unrecognized audio format")
        playback = AudioPlayback()

        with pytest.raises(PlaybackError):
            asyncio.run(playback.play(audio_file))
        assert not playback.is_playing

    def test_mixer_init_failure(self, mock_pygame, audio_file):
        mock_pygame.mixer.init.side_effect = FakePygameError("No available audio device")
        playback = AudioPlayback()

        with pytest.raises(PlaybackError):
            asyncio.run(playback.play(audio_file))

    def test_stop_resolves_false(self, mock_pygame, audio_file):
        mock_pygame.mixer.music.get_busy.return_value = True
        playback = AudioPlayback(poll_interval=0.001)

        async def scenario():
            finished = await playback.play(audio_file)
            assert playback.is_playing
            playback.stop()
            return await finished

        assert asyncio.run(scenario()) is False
        mock_pygame.mixer.music.stop.assert_called()
        assert not playback.is_playing

    def test_play_replaces_current(self, mock_pygame, audio_file, tmp_path):
        mock_pygame.mixer.music.get_busy.return_value = True
        other = tmp_path / "other.mp3"
        other.write_bytes(b"ID3")
        playback = AudioPlayback(poll_interval=0.001)

        async def scenario():
            first = await playback.play(audio_file)
            second = await playback.play(other)
            result = first.result()
            playback.stop()
            return result, second

        first_result, second = asyncio.run(scenario())

        assert first_result is False
        assert second.result() is False
        assert mock_pygame.mixer.music.load.call_count == 2

    def test_stop_is_idempotent(self, mock_pygame):
        playback = AudioPlayback()
        playback.stop()
        playback.stop()
        mock_pygame.mixer.music.stop.assert_not_called()

    def test_close_releases_mixer(self, mock_pygame):
        mock_pygame.mixer.get_init.return_value = True
        playback = AudioPlayback()

        playback.close()

        mock_pygame.mixer.quit.assert_called_once()
