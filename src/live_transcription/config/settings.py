from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class RecognitionProviderName(str, Enum):
    DEEPGRAM = "deepgram"
    PREVIEW = "preview"


@dataclass(slots=True)
class ProviderSettings:
    recognition: RecognitionProviderName = RecognitionProviderName.DEEPGRAM

    def validate(self) -> None:
        if not isinstance(self.recognition, RecognitionProviderName):
            raise ValueError("invalid recognition provider")


@dataclass(slots=True)
class CaptureSettings:
    sample_rate_hz: int | None = None  # None = device default
    channels: int = 1
    blocksize: int = 1024
    input_host_api: str = ""
    input_device: str = ""

    def validate(self) -> None:
        if self.sample_rate_hz is not None and self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0 or None")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.blocksize < 0:
            raise ValueError("blocksize must be >= 0")
        if self.input_host_api is None or self.input_device is None:
            raise ValueError("input_host_api and input_device must be strings")


@dataclass(slots=True)
class RecognitionSettings:
    locale: str = "en-US"
    sample_rate_hz: int = 16000

    def validate(self) -> None:
        if not self.locale:
            raise ValueError("locale must be non-empty")
        if self.sample_rate_hz not in (8000, 16000):
            raise ValueError("sample_rate_hz must be 8000 or 16000")


@dataclass(slots=True)
class DeepgramSettings:
    model: str = "nova-3"
    alternatives: int = 1
    connect_timeout_s: float = 5.0

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")
        if self.alternatives <= 0:
            raise ValueError("alternatives must be > 0")
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be > 0")


@dataclass(slots=True)
class SessionSettings:
    max_queued_frames: int = 256

    def validate(self) -> None:
        if self.max_queued_frames <= 0:
            raise ValueError("max_queued_frames must be > 0")


@dataclass(slots=True)
class SecretsSettings:
    keyring_service: str = "live-transcription"

    def validate(self) -> None:
        if not self.keyring_service:
            raise ValueError("keyring_service must be non-empty")


@dataclass(slots=True)
class AppSettings:
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    recognition: RecognitionSettings = field(default_factory=RecognitionSettings)
    deepgram: DeepgramSettings = field(default_factory=DeepgramSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)

    def validate(self) -> None:
        self.provider.validate()
        self.capture.validate()
        self.recognition.validate()
        self.deepgram.validate()
        self.session.validate()
        self.secrets.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "provider": {"recognition": settings.provider.recognition.value},
        "capture": {
            "sample_rate_hz": settings.capture.sample_rate_hz,
            "channels": settings.capture.channels,
            "blocksize": settings.capture.blocksize,
            "input_host_api": settings.capture.input_host_api,
            "input_device": settings.capture.input_device,
        },
        "recognition": {
            "locale": settings.recognition.locale,
            "sample_rate_hz": settings.recognition.sample_rate_hz,
        },
        "deepgram": {
            "model": settings.deepgram.model,
            "alternatives": settings.deepgram.alternatives,
            "connect_timeout_s": settings.deepgram.connect_timeout_s,
        },
        "session": {"max_queued_frames": settings.session.max_queued_frames},
        "secrets": {"keyring_service": settings.secrets.keyring_service},
    }


def _parse_provider(value: str) -> RecognitionProviderName:
    """Parse the recognition provider, falling back to DEEPGRAM for unknown values."""
    try:
        return RecognitionProviderName(value)
    except ValueError:
        return RecognitionProviderName.DEEPGRAM


def from_dict(data: dict[str, Any]) -> AppSettings:
    provider_data = data.get("provider") or {}
    capture_data = data.get("capture") or {}
    recognition_data = data.get("recognition") or {}
    deepgram_data = data.get("deepgram") or {}
    session_data = data.get("session") or {}
    secrets_data = data.get("secrets") or {}

    capture_rate_raw = capture_data.get("sample_rate_hz")

    settings = AppSettings(
        provider=ProviderSettings(
            recognition=_parse_provider(
                provider_data.get("recognition", RecognitionProviderName.DEEPGRAM.value)
            ),
        ),
        capture=CaptureSettings(
            sample_rate_hz=int(capture_rate_raw) if capture_rate_raw is not None else None,
            channels=int(capture_data.get("channels", 1)),
            blocksize=int(capture_data.get("blocksize", 1024)),
            input_host_api=str(capture_data.get("input_host_api") or ""),
            input_device=str(capture_data.get("input_device") or ""),
        ),
        recognition=RecognitionSettings(
            locale=str(recognition_data.get("locale", "en-US")),
            sample_rate_hz=int(recognition_data.get("sample_rate_hz", 16000)),
        ),
        deepgram=DeepgramSettings(
            model=str(deepgram_data.get("model", "nova-3")),
            alternatives=int(deepgram_data.get("alternatives", 1)),
            connect_timeout_s=float(deepgram_data.get("connect_timeout_s", 5.0)),
        ),
        session=SessionSettings(max_queued_frames=int(session_data.get("max_queued_frames", 256))),
        secrets=SecretsSettings(
            keyring_service=str(secrets_data.get("keyring_service", "live-transcription")),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
