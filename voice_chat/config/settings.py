"""Configuration settings for the voice chat client."""

import os
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


DEFAULT_SCRATCH_DIR = Path(tempfile.gettempdir()) / "voice-chat"

SUPPORTED_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


@dataclass
class SystemPrompts:
    """System prompt sent ahead of each completion request (optional)."""
    default: Optional[str] = None


@dataclass
class AudioSettings:
    """Audio capture and playback settings."""
    sample_rate: int = 44100
    channels: int = 1
    level_interval: float = 0.1  # seconds between amplitude samples
    level_capacity: int = 50
    playback_poll_interval: float = 0.05
    scratch_dir: str = str(DEFAULT_SCRATCH_DIR)


@dataclass
class ApiSettings:
    """Remote speech/chat API settings."""
    base_url: str = "https://api.openai.com/v1"
    chat_model: str = "gpt-3.5-turbo"
    max_tokens: int = 1024
    transcription_model: str = "whisper-1"
    speech_model: str = "tts-1"
    voice: str = "alloy"


@dataclass
class TimeoutSettings:
    """Timeout settings for remote calls."""
    request_timeout: float = 30.0  # seconds, per call


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "dev"
    file_enabled: bool = False
    file_rotation_mb: int = 10
    file_backup_count: int = 7


class Settings:
    """Main settings class for the voice chat client."""

    SECTIONS = ("system_prompts", "audio", "api", "timeouts", "logging")

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 load_env: bool = True):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        self.system_prompts = SystemPrompts()
        self.audio = AudioSettings()
        self.api = ApiSettings()
        self.timeouts = TimeoutSettings()
        self.logging = LoggingSettings()

        if load_env:
            self._load_env_file()

        if self.config_file and self.config_file.exists():
            self.load_from_file()

        if load_env:
            self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from the nearest .env file."""
        if not self._env_loaded:
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from the JSON configuration file.

        Unknown sections and keys are ignored. A malformed file is logged and
        leaves the current values untouched.
        """
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)

                for section in self.SECTIONS:
                    values = config.get(section)
                    if not isinstance(values, dict):
                        continue
                    target = getattr(self, section)
                    for key, value in values.items():
                        if hasattr(target, key):
                            setattr(target, key, value)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from file",
                         file=str(self.config_file),
                         error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            if os.getenv("VOICE_CHAT_SYSTEM_PROMPT"):
                self.system_prompts.default = os.getenv("VOICE_CHAT_SYSTEM_PROMPT")

            # Audio settings
            if os.getenv("VOICE_CHAT_SAMPLE_RATE"):
                self.audio.sample_rate = int(os.getenv("VOICE_CHAT_SAMPLE_RATE"))
            if os.getenv("VOICE_CHAT_SCRATCH_DIR"):
                self.audio.scratch_dir = os.getenv("VOICE_CHAT_SCRATCH_DIR")

            # API settings
            if os.getenv("VOICE_CHAT_BASE_URL"):
                self.api.base_url = os.getenv("VOICE_CHAT_BASE_URL")
            if os.getenv("VOICE_CHAT_CHAT_MODEL"):
                self.api.chat_model = os.getenv("VOICE_CHAT_CHAT_MODEL")
            if os.getenv("VOICE_CHAT_MAX_TOKENS"):
                self.api.max_tokens = int(os.getenv("VOICE_CHAT_MAX_TOKENS"))
            if os.getenv("VOICE_CHAT_VOICE"):
                self.api.voice = os.getenv("VOICE_CHAT_VOICE")

            if os.getenv("VOICE_CHAT_REQUEST_TIMEOUT"):
                self.timeouts.request_timeout = float(os.getenv("VOICE_CHAT_REQUEST_TIMEOUT"))

            # Logging settings
            if os.getenv("LOG_LEVEL"):
                self.logging.level = os.getenv("LOG_LEVEL").upper()
            if os.getenv("LOG_FORMAT"):
                self.logging.format = os.getenv("LOG_FORMAT")
            if os.getenv("LOG_FILE_ENABLED"):
                self.logging.file_enabled = os.getenv("LOG_FILE_ENABLED").lower() == "true"

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """Save current settings to a JSON file."""
        save_path = Path(file_path) if file_path else self.config_file
        if not save_path:
            raise ValueError("No file path provided")

        with self._lock:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            with open(save_path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info("Saved settings to file", file=str(save_path))

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if self.audio.sample_rate not in [8000, 16000, 22050, 24000, 44100, 48000]:
            issues.append(f"Invalid sample rate: {self.audio.sample_rate}")
        if self.audio.channels not in [1, 2]:
            issues.append(f"Invalid channels: {self.audio.channels}")
        if self.audio.level_interval <= 0:
            issues.append(f"Invalid level interval: {self.audio.level_interval}")
        if self.audio.level_capacity <= 0:
            issues.append(f"Invalid level capacity: {self.audio.level_capacity}")

        if self.api.voice not in SUPPORTED_VOICES:
            issues.append(f"Unknown voice: {self.api.voice}")
        if self.api.max_tokens <= 0:
            issues.append(f"Invalid max tokens: {self.api.max_tokens}")
        if not self.api.base_url.startswith(("http://", "https://")):
            issues.append(f"Invalid base URL: {self.api.base_url}")

        if self.timeouts.request_timeout <= 0:
            issues.append(f"Invalid request timeout: {self.timeouts.request_timeout}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}


# Global settings instance (no credentials live here)
settings = Settings()
