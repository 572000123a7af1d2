from __future__ import annotations

from typing import Callable, Protocol

from live_transcription.core.audio.format import AudioFrame

# Called in capture order, possibly from a device thread.
FrameSink = Callable[[AudioFrame], None]


class CapturePort(Protocol):
    async def configure_for_voice_capture(self) -> None: ...
    async def start(self, sink: FrameSink) -> None: ...
    async def stop(self) -> None: ...
