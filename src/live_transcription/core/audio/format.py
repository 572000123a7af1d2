from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class AudioFrame:
    """Raw float32 samples as delivered by a capture device.

    `samples` is either 1D (mono) or 2D shaped (frames, channels).
    """

    samples: np.ndarray
    sample_rate_hz: int

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim else 0

    @property
    def duration_s(self) -> float:
        return self.num_frames / self.sample_rate_hz


def to_mono_f32(samples: np.ndarray) -> np.ndarray:
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim == 1:
        return samples
    if samples.ndim == 2:
        return samples.mean(axis=1, dtype=np.float32)
    raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")


def resample_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    samples = np.asarray(samples, dtype=np.float32)
    if from_rate_hz == to_rate_hz or samples.size == 0:
        return samples

    src_len = samples.shape[0]
    dst_len = max(int(math.floor(src_len * to_rate_hz / from_rate_hz)), 1)
    positions = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    return np.interp(positions, np.arange(src_len, dtype=np.float32), samples).astype(np.float32)


def frame_to_pcm16le(frame: AudioFrame, *, target_sample_rate_hz: int) -> bytes:
    """Mix down, resample and quantize a captured frame for a recognition backend."""
    mono = to_mono_f32(frame.samples)
    mono = resample_linear(mono, from_rate_hz=frame.sample_rate_hz, to_rate_hz=target_sample_rate_hz)
    quantized = np.round(np.clip(mono, -1.0, 1.0) * 32767.0).astype("<i2")
    return quantized.tobytes()
