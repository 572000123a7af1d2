from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import TranscriptionResult


class AuthorizationStatus(str, Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    STREAMING = "STREAMING"
    FINISHING = "FINISHING"
    TERMINATED = "TERMINATED"


class TerminationReason(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CAPTURE_CONFIG_ERROR = "capture_config_error"
    CAPTURE_START_ERROR = "capture_start_error"
    RECOGNITION_UNAVAILABLE = "recognition_unavailable"
    RECOGNITION_FAILED = "recognition_failed"


class RecognitionEventType(str, Enum):
    PARTIAL = "RECOGNITION_PARTIAL"
    FINAL = "RECOGNITION_FINAL"
    FAILURE = "RECOGNITION_FAILURE"


@dataclass(frozen=True, slots=True)
class RecognitionPartial:
    result: TranscriptionResult
    type: RecognitionEventType = RecognitionEventType.PARTIAL

    def __post_init__(self) -> None:
        if self.result.is_final:
            raise ValueError("RecognitionPartial requires result.is_final == False")


@dataclass(frozen=True, slots=True)
class RecognitionFinal:
    result: TranscriptionResult
    type: RecognitionEventType = RecognitionEventType.FINAL

    def __post_init__(self) -> None:
        if not self.result.is_final:
            raise ValueError("RecognitionFinal requires result.is_final == True")


@dataclass(frozen=True, slots=True)
class RecognitionFailure:
    message: str
    cause: BaseException | None = None
    type: RecognitionEventType = RecognitionEventType.FAILURE


RecognitionEvent = RecognitionPartial | RecognitionFinal | RecognitionFailure
