from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from live_transcription.core.audio.capture import FrameSink
from live_transcription.core.audio.format import AudioFrame
from live_transcription.domain.errors import CaptureConfigError, CaptureStartError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SoundDeviceCapture:
    """Microphone capture through sounddevice/PortAudio.

    If sample_rate_hz is None, the device's default sample rate is used and the
    recognition backend resamples. WASAPI in particular rejects most other rates.
    """

    sample_rate_hz: int | None = None
    channels: int = 1
    device: int | str | None = None
    blocksize: int = 1024

    _stream: Any = field(init=False, default=None, repr=False)
    _sink: FrameSink | None = field(init=False, default=None, repr=False)

    async def configure_for_voice_capture(self) -> None:
        import sounddevice as sd

        if self._stream is not None:
            raise CaptureConfigError("capture is already configured")
        try:
            sd.check_input_settings(
                device=self.device,
                channels=self.channels,
                dtype="float32",
                samplerate=self.sample_rate_hz,
            )
            self._stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=self.channels,
                dtype="float32",
                device=self.device,
                blocksize=self.blocksize,
                callback=self._callback,
            )
        except Exception as exc:
            raise CaptureConfigError(f"Input device rejected voice capture settings: {exc}") from exc
        logger.info(
            "[Capture] Configured (device=%s, rate=%s, channels=%d)",
            self.device,
            int(self._stream.samplerate),
            self.channels,
        )

    async def start(self, sink: FrameSink) -> None:
        if self._stream is None:
            raise CaptureStartError("capture is not configured")
        self._sink = sink
        try:
            self._stream.start()
        except Exception as exc:
            self._sink = None
            raise CaptureStartError(f"Input stream failed to start: {exc}") from exc
        logger.info("[Capture] Started")

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        self._sink = None
        if stream is None:
            return
        with contextlib.suppress(Exception):
            stream.stop()
        with contextlib.suppress(Exception):
            stream.close()
        logger.info("[Capture] Stopped")

    def _callback(self, indata, _frames, _time, status) -> None:  # called from PortAudio thread
        if status:
            logger.warning("[Capture] Input status: %s", status)
        sink = self._sink
        stream = self._stream
        if sink is None or stream is None:
            return
        sink(AudioFrame(samples=np.asarray(indata, dtype=np.float32).copy(), sample_rate_hz=int(stream.samplerate)))


def resolve_input_device(*, host_api: str = "", device: str = "") -> int | None:
    """Map configured host API / device names (or a device index) to a PortAudio index."""
    host_api = (host_api or "").strip().lower()
    device = (device or "").strip()
    if not host_api and not device:
        return None

    import sounddevice as sd

    hostapis = sd.query_hostapis()
    devices = sd.query_devices()

    hostapi_index: int | None = None
    if host_api:
        hostapi_index = next(
            (idx for idx, item in enumerate(hostapis) if str(item.get("name", "")).lower() == host_api),
            None,
        )

    def _is_candidate(idx: int) -> bool:
        info = devices[idx]
        if int(info.get("max_input_channels", 0) or 0) <= 0:
            return False
        return hostapi_index is None or int(info.get("hostapi", -1)) == hostapi_index

    if device.isdigit() and int(device) < len(devices) and _is_candidate(int(device)):
        return int(device)

    if not device and hostapi_index is not None:
        default_input = hostapis[hostapi_index].get("default_input_device")
        if isinstance(default_input, int) and default_input >= 0:
            return default_input

    for idx, info in enumerate(devices):
        if not _is_candidate(idx):
            continue
        if device and str(info.get("name", "")).lower() != device.lower():
            continue
        return idx
    return None
