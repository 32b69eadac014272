"""Conversation transcript kept for the lifetime of the process."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4


class Originator(Enum):
    """Who produced a message."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, eq=False)
class Message:
    """A single chat turn. Only the audio reference may change after creation."""

    content: str
    originator: Originator
    audio_ref: Optional[Path] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_from_user(self) -> bool:
        return self.originator is Originator.USER

    def attach_audio(self, audio_ref: Path) -> None:
        """Attach the synthesized speech for this message."""
        object.__setattr__(self, "audio_ref", Path(audio_ref))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.originator.value,
            "content": self.content,
            "audio_ref": str(self.audio_ref) if self.audio_ref else None,
            "created_at": self.created_at,
        }


class ConversationLog:
    """Ordered, append-only list of messages (cleared only explicitly)."""

    def __init__(self) -> None:
        self._messages: List[Message] = []

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def add_user_message(self, text: str) -> Message:
        return self.append(Message(content=text, originator=Originator.USER))

    def add_assistant_message(self, text: str, audio_ref: Optional[Path] = None) -> Message:
        return self.append(
            Message(content=text, originator=Originator.ASSISTANT, audio_ref=audio_ref)
        )

    def clear(self) -> None:
        self._messages = []

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"messages": [m.to_dict() for m in self._messages]}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
