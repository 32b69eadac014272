"""The output of one capture session."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog


logger = structlog.get_logger()


@dataclass
class Recording:
    """
    Output of one capture session.

    ``path`` is None when the session captured no audio. The recording is
    owned by whoever received it and should be discarded once consumed.
    """

    path: Optional[Path]
    levels: List[float] = field(default_factory=list)
    duration_seconds: float = 0.0
    sample_rate: int = 44100

    @property
    def is_empty(self) -> bool:
        return self.path is None

    def discard(self) -> None:
        """Delete the recorded file, if any."""
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete recording", path=str(self.path), error=str(e))
        self.path = None
