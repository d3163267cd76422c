"""Data models for whisperwrap."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


class OutputMode(str, Enum):
    """Where the whisper executable writes its JSON result."""
    STDOUT = "json-on-stdout"
    FILE = "json-file-in-temp-dir"

    @classmethod
    def parse(cls, value: Union[str, "OutputMode"]) -> "OutputMode":
        """Accepts the enum value itself or the short aliases 'stdout' and 'file'."""
        if isinstance(value, cls):
            return value
        aliases = {"stdout": cls.STDOUT, "file": cls.FILE}
        normalized = str(value).strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized) # Raises ValueError for unknown modes


class WhisperModel(str, Enum):
    """Model names understood by the openai-whisper CLI."""
    TINY = "tiny"
    BASE = "base"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    TURBO = "turbo"

    @classmethod
    def is_name(cls, value: str) -> bool:
        return value in {member.value for member in cls}


@dataclass(frozen=True)
class Segment:
    """Represents a single timed chunk of text."""
    start: float
    end: float
    text: str

@dataclass(frozen=True)
class TranscriptionResult:
    """Holds the structured output of one whisper run."""
    text: str
    segments: Tuple[Segment, ...] = field(default_factory=tuple)

@dataclass(frozen=True)
class TranscriptionRequest:
    """Options for a single transcription call."""
    audio_path: str
    model: Optional[str] = None # WhisperModel name or path to a model file
    language: Optional[str] = None
    threads: Optional[int] = None
    translate: bool = False
    binary_path: Optional[str] = None
    output_mode: Optional[OutputMode] = None # None -> use the transcriber's mode
