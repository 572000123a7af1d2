from __future__ import annotations

from .events import TerminationReason


class TranscriptionError(Exception):
    """Terminal error of a transcription session."""

    reason: TerminationReason = TerminationReason.RECOGNITION_FAILED


class CaptureConfigError(TranscriptionError):
    reason = TerminationReason.CAPTURE_CONFIG_ERROR


class CaptureStartError(TranscriptionError):
    reason = TerminationReason.CAPTURE_START_ERROR


class RecognitionUnavailable(TranscriptionError):
    reason = TerminationReason.RECOGNITION_UNAVAILABLE


class RecognitionFailed(TranscriptionError):
    reason = TerminationReason.RECOGNITION_FAILED
