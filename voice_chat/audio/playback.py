"""Audio file playback through pygame's mixer."""

import asyncio
import os
from pathlib import Path
from typing import Optional, Union

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame  # noqa: E402
import structlog

from ..errors import PlaybackError


logger = structlog.get_logger()


class AudioPlayback:
    """
    Plays one audio file at a time.

    ``play()`` returns as soon as playback has started. The returned future
    resolves once: True when the file played to the end, False when it was
    stopped or replaced by another ``play()``.
    """

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval
        self.current: Optional[Path] = None
        self._monitor: Optional[asyncio.Task] = None
        self._finished: Optional[asyncio.Future] = None

    @property
    def is_playing(self) -> bool:
        return self._finished is not None and not self._finished.done()

    def _ensure_mixer(self) -> None:
        if not pygame.mixer.get_init():
            pygame.mixer.init()
            logger.debug("Initialized pygame mixer")

    async def play(self, resource: Union[str, Path]) -> asyncio.Future:
        """
        Start playing an audio file, stopping whatever is playing now.

        Raises:
            PlaybackError: The file is missing or the mixer cannot play it
        """
        path = Path(resource)
        self.stop()

        if not path.exists():
            raise PlaybackError(f"Audio file not found: {path}")

        try:
            self._ensure_mixer()
            pygame.mixer.music.load(str(path))
            pygame.mixer.music.play()
        except pygame.error as e:
            logger.error("Playback failed", path=str(path), error=str(e))
            raise PlaybackError(f"Failed to play audio: {e}") from e

        loop = asyncio.get_running_loop()
        finished = loop.create_future()
        self._finished = finished
        self.current = path
        self._monitor = loop.create_task(self._wait_for_end(finished))

        logger.debug("Playback started", path=str(path))
        return finished

    async def _wait_for_end(self, finished: asyncio.Future) -> None:
        while pygame.mixer.music.get_busy():
            await asyncio.sleep(self.poll_interval)
        if not finished.done():
            finished.set_result(True)
            self.current = None
            logger.debug("Playback completed")

    def stop(self) -> None:
        """Stop playback. No-op if nothing is playing."""
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None

        if self.is_playing:
            try:
                pygame.mixer.music.stop()
            except pygame.error as e:
                logger.warning("Error stopping playback", error=str(e))
            self._finished.set_result(False)
            logger.debug("Playback stopped", path=str(self.current))

        self._finished = None
        self.current = None

    def close(self) -> None:
        """Stop playback and release the mixer."""
        self.stop()
        if pygame.mixer.get_init():
            pygame.mixer.quit()
