from __future__ import annotations

import logging

from live_transcription.config.settings import AppSettings, RecognitionProviderName, SecretsSettings
from live_transcription.core.audio.capture import CapturePort
from live_transcription.core.storage.secrets import (
    KeyringSecretStore,
    SecretStore,
    mask_secret,
    resolve_secret,
)
from live_transcription.core.stt.backend import RecognitionPort
from live_transcription.core.stt.client import (
    LiveTranscriptionClient,
    TranscriptionClient,
    preview_client,
)
from live_transcription.core.stt.session import SessionEngine
from live_transcription.providers.capture.sounddevice_capture import (
    SoundDeviceCapture,
    resolve_input_device,
)
from live_transcription.providers.stt.deepgram import DeepgramRecognitionBackend

logger = logging.getLogger(__name__)

DEEPGRAM_API_KEY = "deepgram_api_key"
DEEPGRAM_API_KEY_ENV = "DEEPGRAM_API_KEY"


def create_secret_store(settings: SecretsSettings) -> SecretStore:
    return KeyringSecretStore(service_name=settings.keyring_service)


def create_capture(settings: AppSettings) -> CapturePort:
    device: int | str | None = None
    try:
        device = resolve_input_device(
            host_api=settings.capture.input_host_api,
            device=settings.capture.input_device,
        )
    except Exception as exc:
        logger.warning(f"[Capture] Could not resolve input device, using system default: {exc}")
    return SoundDeviceCapture(
        sample_rate_hz=settings.capture.sample_rate_hz,
        channels=settings.capture.channels,
        device=device,
        blocksize=settings.capture.blocksize,
    )


def create_recognition_backend(settings: AppSettings, *, secrets: SecretStore) -> RecognitionPort:
    if settings.provider.recognition == RecognitionProviderName.DEEPGRAM:
        api_key = resolve_secret(secrets, key=DEEPGRAM_API_KEY, env_var=DEEPGRAM_API_KEY_ENV) or ""
        if api_key:
            logger.info("Using Deepgram recognition (model=%s, key=%s)", settings.deepgram.model, mask_secret(api_key))
        else:
            # Reported as DENIED by check_authorization.
            logger.warning(f"No Deepgram API key (secret `{DEEPGRAM_API_KEY}` or env var {DEEPGRAM_API_KEY_ENV})")
        return DeepgramRecognitionBackend(
            api_key=api_key,
            model=settings.deepgram.model,
            language=settings.recognition.locale,
            sample_rate_hz=settings.recognition.sample_rate_hz,
            alternatives=settings.deepgram.alternatives,
            connect_timeout_s=settings.deepgram.connect_timeout_s,
        )

    raise ValueError(f"Unsupported recognition provider: {settings.provider.recognition}")


def create_session_engine(
    settings: AppSettings,
    *,
    secrets: SecretStore,
    capture: CapturePort | None = None,
) -> SessionEngine:
    return SessionEngine(
        capture=capture if capture is not None else create_capture(settings),
        recognition=create_recognition_backend(settings, secrets=secrets),
        max_queued_frames=settings.session.max_queued_frames,
    )


def create_client(settings: AppSettings, *, secrets: SecretStore) -> TranscriptionClient:
    if settings.provider.recognition == RecognitionProviderName.PREVIEW:
        return preview_client()
    return LiveTranscriptionClient(engine=create_session_engine(settings, secrets=secrets))
