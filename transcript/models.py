"""
Data model for the transcription pipeline.

Plain dataclasses shared by the probe, chunker, provider adapters,
merger and formatter. Timestamps are always seconds as floats.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional


class ConcurrencyMode(str, Enum):
    """How many chunk requests a provider tolerates at once."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class MediaFile:
    """A source file as seen by the probe at job start."""

    path: str
    size: int
    duration: float
    extension: str


@dataclass
class ChunkInfo:
    """One time slice of a source file, materialized as its own file.

    ``end_time`` is the logical (trimmed) end of the slice. ``window_end`` is
    where the extracted file actually stops, so neighbouring chunks share the
    overlap between ``end_time`` and ``window_end``.
    """

    index: int
    start_time: float
    end_time: float
    path: str
    size: int
    window_end: Optional[float] = None

    def __post_init__(self):
        if self.window_end is None:
            self.window_end = self.end_time

    @property
    def window_duration(self) -> float:
        return self.window_end - self.start_time


@dataclass(frozen=True)
class ProviderCapability:
    """Static description of what a provider accepts."""

    name: str
    display_name: str
    max_input_bytes: int
    concurrency: ConcurrencyMode
    diarization: bool = False
    supports_compression: bool = False
    formats: tuple = ()


@dataclass
class TranscriptionSegment:
    """A timestamped span of transcript text."""

    id: int
    start: float
    end: float
    text: str
    speaker: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class Speaker:
    id: str
    name: Optional[str] = None
    segments: list[int] = field(default_factory=list)


@dataclass
class TranscriptionResult:
    """Result of transcribing one unit of work or a whole job."""

    text: str
    provider: str
    segments: Optional[list[TranscriptionSegment]] = None
    speakers: Optional[list[Speaker]] = None
    duration: Optional[float] = None
    language: Optional[str] = None
    model: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dict, leaving out unset fields."""
        return _drop_none(asdict(self))


@dataclass
class TranscriptionOptions:
    """Per-job options chosen by the caller."""

    provider: str
    language: Optional[str] = None
    model: Optional[str] = None
    diarize: bool = False
    timestamps: bool = True
    format: str = "text"


def _drop_none(value):
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value
