from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncGenerator, Protocol, Sequence

from live_transcription.core.stt.session import SessionEngine, TranscriptionStream
from live_transcription.domain.events import AuthorizationStatus
from live_transcription.domain.models import Transcription, TranscriptionResult

PREVIEW_TEXT = (
    "Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod "
    "tempor incididunt ut labore et dolore magna aliqua."
)


class ResultStream(Protocol):
    """Results of one session. `aclose` ends the session early."""

    def __aiter__(self) -> ResultStream: ...
    async def __anext__(self) -> TranscriptionResult: ...
    async def aclose(self) -> None: ...


class TranscriptionClient(Protocol):
    async def request_authorization(self) -> AuthorizationStatus: ...
    async def start_session(self) -> ResultStream: ...
    async def finish_session(self) -> None: ...


@dataclass(slots=True)
class LiveTranscriptionClient:
    engine: SessionEngine

    async def request_authorization(self) -> AuthorizationStatus:
        return await self.engine.request_authorization()

    async def start_session(self) -> TranscriptionStream:
        return await self.engine.start_session()

    async def finish_session(self) -> None:
        await self.engine.finish_session()


@dataclass(slots=True)
class ScriptedTranscriptionClient:
    """Deterministic client for previews and presentation tests.

    Every `start_session` replays `results` (sleeping `interval_s` before each
    item) and then raises `error` if one is set. `finish_session` ends the
    stream currently being replayed without an error.
    """

    authorization: AuthorizationStatus = AuthorizationStatus.AUTHORIZED
    results: Sequence[TranscriptionResult] = ()
    error: Exception | None = None
    interval_s: float = 0.0

    started: int = 0
    finished: int = 0
    _stop: asyncio.Event | None = field(default=None, repr=False)

    async def request_authorization(self) -> AuthorizationStatus:
        return self.authorization

    async def start_session(self) -> AsyncGenerator[TranscriptionResult, None]:
        if self._stop is not None:
            self._stop.set()
        self.started += 1
        stop = asyncio.Event()
        self._stop = stop
        return self._replay(stop)

    async def finish_session(self) -> None:
        self.finished += 1
        if self._stop is not None:
            self._stop.set()
            self._stop = None

    async def _replay(self, stop: asyncio.Event) -> AsyncGenerator[TranscriptionResult, None]:
        for result in self.results:
            if self.interval_s > 0:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.interval_s)
                except asyncio.TimeoutError:
                    pass
            if stop.is_set():
                return
            yield result
        if self.error is not None and not stop.is_set():
            raise self.error


def word_by_word_results(text: str) -> list[TranscriptionResult]:
    results: list[TranscriptionResult] = []
    current = ""
    for word in text.split():
        current += f"{word} "
        results.append(TranscriptionResult(best_transcription=Transcription(formatted_text=current)))
    return results


def preview_client(text: str = PREVIEW_TEXT, *, interval_s: float = 0.3) -> ScriptedTranscriptionClient:
    return ScriptedTranscriptionClient(
        authorization=AuthorizationStatus.AUTHORIZED,
        results=word_by_word_results(text),
        interval_s=interval_s,
    )
