from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class AcousticFeature:
    values_per_frame: tuple[float, ...] = ()
    frame_duration_s: float = 0.0

    def __post_init__(self) -> None:
        if self.frame_duration_s < 0:
            raise ValueError("frame_duration_s must be >= 0")


@dataclass(frozen=True, slots=True)
class VoiceAnalytics:
    jitter: AcousticFeature
    pitch: AcousticFeature
    shimmer: AcousticFeature
    voicing: AcousticFeature


@dataclass(frozen=True, slots=True)
class SessionMetadata:
    average_pause_duration_s: float
    speaking_rate: float  # words per minute
    voice_analytics: VoiceAnalytics | None = None

    def __post_init__(self) -> None:
        if self.speaking_rate < 0:
            raise ValueError("speaking_rate must be >= 0")
        if self.average_pause_duration_s < 0:
            raise ValueError("average_pause_duration_s must be >= 0")


@dataclass(frozen=True, slots=True)
class Segment:
    text: str
    confidence: float = 0.0
    start_offset_s: float = 0.0
    duration_s: float = 0.0
    alternatives: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError("confidence must be in 0.0..1.0")
        if self.start_offset_s < 0 or self.duration_s < 0:
            raise ValueError("segment timing must be >= 0")

    @property
    def end_offset_s(self) -> float:
        return self.start_offset_s + self.duration_s


@dataclass(frozen=True, slots=True)
class Transcription:
    formatted_text: str
    segments: tuple[Segment, ...] = ()


@dataclass(frozen=True, slots=True)
class TranscriptionResult:
    best_transcription: Transcription
    is_final: bool = False
    alternative_transcriptions: tuple[Transcription, ...] = field(default=())
    metadata: SessionMetadata | None = None

    @property
    def text(self) -> str:
        return self.best_transcription.formatted_text
