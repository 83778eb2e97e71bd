"""
Data models (plain dataclasses) for VideoKB.
"""

from dataclasses import dataclass, field
from typing import Optional

from videokb.core.constants import SourceType, TranscriptMethod, VideoStatus


@dataclass
class Video:
    id: str
    source_type: str
    reference: str
    creator_id: Optional[str] = None
    title: Optional[str] = None
    status: str = VideoStatus.PENDING
    transcript: Optional[str] = None
    transcript_segments: list = field(default_factory=list)
    transcript_method: Optional[str] = None
    transcript_cost_usd: float = 0.0
    duration_seconds: Optional[float] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    last_error: Optional[str] = None
    attempt_count: int = 0
    recovery_count: int = 0
    job_token: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in VideoStatus.TERMINAL

    @property
    def segments(self) -> list["TranscriptSegment"]:
        return [TranscriptSegment.from_dict(s) for s in self.transcript_segments]


@dataclass
class TranscriptSegment:
    text: str
    start: float                     # seconds
    duration: float                  # seconds

    @property
    def end(self) -> float:
        return self.start + self.duration

    def as_dict(self) -> dict:
        return {'text': self.text, 'start': self.start, 'duration': self.duration}

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptSegment":
        return cls(text=str(data['text']),
                   start=float(data['start']),
                   duration=float(data['duration']))


@dataclass
class TranscriptResult:
    source_type: SourceType
    method: TranscriptMethod
    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    cost_usd: float = 0.0
    processing_time_ms: int = 0
    duration_seconds: Optional[float] = None
    title: Optional[str] = None
    estimated_cost_usd: Optional[float] = None
    extra: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.method == TranscriptMethod.SPEECH_TO_TEXT


class NoTranscriptAvailable:
    """Acquirer outcome meaning "no transcript here, try the next strategy"."""

    def __init__(self, reason: str = ""):
        self.reason = reason

    def __repr__(self):
        return f"NoTranscriptAvailable({self.reason!r})"


@dataclass
class TranscriptChunk:
    video_id: str
    chunk_index: int
    text: str
    start_time_seconds: float
    end_time_seconds: float
    word_count: int
    embedding: Optional[list[float]] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class SearchHit:
    chunk: TranscriptChunk
    similarity: float


@dataclass
class TriggerRequest:
    video_id: str
    creator_id: Optional[str]
    source_type: Optional[str]
    reference: str
    force_transcribe: bool = False
