"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionState(Enum):
    """Session lifecycle state."""

    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AudioSegment:
    """One closed unit of captured audio, encoded and ready for upload."""

    data: bytes
    index: int
    encoding: str
    timestamp: float
    duration: float = 0.0
    sample_rate: int = 16000


@dataclass
class TranscriptionSegment:
    """A segment of transcribed text with timing information."""

    text: str
    start: float
    end: float
    confidence: float = 0.0


@dataclass
class TranscriptionResult:
    """Result from transcription."""

    text: str
    language: str
    confidence: float = 0.0
    segments: list[TranscriptionSegment] = field(default_factory=list)


@dataclass
class TranscriptUpdate:
    """Transcript state right after one segment's result was applied."""

    full_text: str
    suffix: str
    segment_index: int


@dataclass
class TranslationSegment:
    """A unit of translated output, positioned in session order."""

    source_text: str
    translated_text: str
    target_language: str
    position: int


@dataclass
class SpeechTask:
    """Text queued for spoken playback."""

    text: str
    language_code: str


@dataclass
class Session:
    """The single live session owned by the controller."""

    id: str
    state: SessionState
    created_at: datetime
    target_language: str
    duration: float = 0.0
    segment_count: int = 0
    detected_language: str | None = None
    transcript: str = ""
