from __future__ import annotations

from typing import AsyncIterator, Protocol

from live_transcription.core.audio.format import AudioFrame
from live_transcription.domain.events import AuthorizationStatus, RecognitionEvent


class RecognitionHandle(Protocol):
    async def send_audio(self, frame: AudioFrame) -> None: ...
    def events(self) -> AsyncIterator[RecognitionEvent]: ...
    async def cancel(self) -> None: ...


class RecognitionPort(Protocol):
    async def check_authorization(self) -> AuthorizationStatus: ...
    async def begin_recognition(self) -> RecognitionHandle: ...
