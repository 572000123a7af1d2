"""Deepgram realtime recognition backend over a raw WebSocket.

Audio is streamed as linear16 PCM. Interim and finalized `Results` messages are
folded into one growing transcript that is published as partial results; when
Deepgram closes the stream the accumulated transcript becomes the final result.
Uses websocket-client on worker threads, posting events back to the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator
from urllib.parse import urlencode

from live_transcription.core.audio.format import AudioFrame, frame_to_pcm16le
from live_transcription.domain.errors import RecognitionUnavailable
from live_transcription.domain.events import (
    AuthorizationStatus,
    RecognitionEvent,
    RecognitionFailure,
    RecognitionFinal,
    RecognitionPartial,
)
from live_transcription.domain.models import (
    Segment,
    SessionMetadata,
    Transcription,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"
MAX_PENDING_FRAMES = 256

_STOP = object()


def _segments_from_words(words: list[dict[str, Any]]) -> tuple[Segment, ...]:
    segments: list[Segment] = []
    for word in words:
        start = float(word.get("start", 0.0))
        end = float(word.get("end", start))
        segments.append(
            Segment(
                text=str(word.get("punctuated_word") or word.get("word") or ""),
                confidence=min(max(float(word.get("confidence", 0.0)), 0.0), 1.0),
                start_offset_s=max(start, 0.0),
                duration_s=max(end - start, 0.0),
            )
        )
    return tuple(segments)


def _join(parts: list[Transcription]) -> Transcription:
    text = " ".join(p.formatted_text for p in parts if p.formatted_text)
    segments = tuple(s for p in parts for s in p.segments)
    return Transcription(formatted_text=text, segments=segments)


def summarize_segments(segments: tuple[Segment, ...]) -> SessionMetadata | None:
    if not segments:
        return None
    spoken_s = segments[-1].end_offset_s - segments[0].start_offset_s
    speaking_rate = len(segments) / spoken_s * 60.0 if spoken_s > 0 else 0.0
    pauses = [
        nxt.start_offset_s - cur.end_offset_s
        for cur, nxt in zip(segments, segments[1:])
        if nxt.start_offset_s > cur.end_offset_s
    ]
    average_pause = sum(pauses) / len(pauses) if pauses else 0.0
    return SessionMetadata(average_pause_duration_s=average_pause, speaking_rate=speaking_rate)


@dataclass(slots=True)
class TranscriptAssembler:
    """Folds Deepgram `Results` messages into cumulative transcription results."""

    _committed: list[Transcription] = field(default_factory=list)
    _interim: Transcription | None = None

    def apply(self, message: dict[str, Any]) -> TranscriptionResult | None:
        if message.get("type") != "Results":
            return None
        alternatives = (message.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return None

        readings = [
            Transcription(
                formatted_text=str(alt.get("transcript", "")).strip(),
                segments=_segments_from_words(alt.get("words") or []),
            )
            for alt in alternatives
        ]
        best = readings[0]

        if message.get("is_final", False):
            if best.formatted_text:
                self._committed.append(best)
            self._interim = None
            current = _join(self._committed)
        else:
            self._interim = best
            current = _join([*self._committed, best])

        if not current.formatted_text:
            return None
        return TranscriptionResult(
            best_transcription=current,
            is_final=False,
            alternative_transcriptions=tuple(
                _join([*self._committed, alt]) for alt in readings[1:] if alt.formatted_text
            ),
        )

    def finish(self) -> TranscriptionResult | None:
        parts = list(self._committed)
        if self._interim is not None:
            parts.append(self._interim)
        transcription = _join(parts)
        if not transcription.formatted_text:
            return None
        return TranscriptionResult(
            best_transcription=transcription,
            is_final=True,
            metadata=summarize_segments(transcription.segments),
        )


@dataclass(slots=True)
class DeepgramRecognitionBackend:
    api_key: str
    model: str = "nova-3"
    language: str = "en-US"
    sample_rate_hz: int = 16000
    alternatives: int = 1
    connect_timeout_s: float = 5.0

    async def check_authorization(self) -> AuthorizationStatus:
        return AuthorizationStatus.AUTHORIZED if self.api_key else AuthorizationStatus.DENIED

    async def begin_recognition(self) -> _DeepgramRecognitionHandle:
        if not self.api_key:
            raise RecognitionUnavailable("Deepgram API key is not configured")
        if self.sample_rate_hz not in (8000, 16000):
            raise RecognitionUnavailable("sample_rate_hz must be 8000 or 16000")

        handle = _DeepgramRecognitionHandle(
            api_key=self.api_key,
            url=self.build_url(),
            sample_rate_hz=self.sample_rate_hz,
            connect_timeout_s=self.connect_timeout_s,
        )
        await handle.connect()
        return handle

    def build_url(self) -> str:
        params = {
            "model": self.model,
            "language": self.language,
            "encoding": "linear16",
            "sample_rate": self.sample_rate_hz,
            "channels": 1,
            "interim_results": "true",
            "punctuate": "true",
            "alternatives": self.alternatives,
        }
        return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"


@dataclass(slots=True)
class _DeepgramRecognitionHandle:
    api_key: str
    url: str
    sample_rate_hz: int
    connect_timeout_s: float
    max_pending_frames: int = MAX_PENDING_FRAMES

    _events: asyncio.Queue[RecognitionEvent | None] = field(init=False, repr=False)
    _audio_q: queue.Queue[AudioFrame | object] = field(init=False, repr=False)
    _assembler: TranscriptAssembler = field(init=False, repr=False)
    _ws: Any = field(init=False, default=None, repr=False)
    _thread: threading.Thread | None = field(init=False, default=None, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(init=False, default=None, repr=False)
    _ready: threading.Event = field(init=False, repr=False)
    _open: bool = field(init=False, default=False)
    _cancelled: bool = field(init=False, default=False)
    _failed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._events = asyncio.Queue()
        self._audio_q = queue.Queue(maxsize=self.max_pending_frames)
        self._assembler = TranscriptAssembler()
        self._ready = threading.Event()

    async def connect(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(target=self._run_sync, name="deepgram-ws", daemon=True)
        self._thread.start()

        try:
            ready = await self._loop.run_in_executor(None, self._ready.wait, self.connect_timeout_s)
        except BaseException:
            # Cancelled mid-connect: nobody else holds this handle.
            await self.cancel()
            raise
        if not ready or not self._open:
            await self.cancel()
            raise RecognitionUnavailable("Deepgram WebSocket connection could not be established")
        logger.info("[Deepgram] Connected")

    def _run_sync(self) -> None:
        import websocket

        try:
            self._ws = websocket.WebSocketApp(
                self.url,
                header={"Authorization": f"Token {self.api_key}"},
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            io_thread = threading.Thread(target=self._ws.run_forever, name="deepgram-ws-io", daemon=True)
            io_thread.start()

            if not self._ready.wait(timeout=self.connect_timeout_s) or not self._open or self._cancelled:
                return

            while True:
                try:
                    data = self._audio_q.get(timeout=0.1)
                except queue.Empty:
                    if not io_thread.is_alive():
                        break
                    continue
                if data is _STOP or self._cancelled:
                    break
                pcm = frame_to_pcm16le(data, target_sample_rate_hz=self.sample_rate_hz)
                self._ws.send(pcm, opcode=websocket.ABNF.OPCODE_BINARY)

            if not self._cancelled and io_thread.is_alive():
                # Ask Deepgram to flush pending results and close the stream.
                self._ws.send(json.dumps({"type": "CloseStream"}))
                io_thread.join(timeout=self.connect_timeout_s)
        except Exception as exc:
            if not self._cancelled and not self._failed:
                self._failed = True
                self._post(RecognitionFailure(f"Deepgram streaming error: {exc}", cause=exc))
        finally:
            if self._ws is not None:
                with contextlib.suppress(Exception):
                    self._ws.close()
            self._post(None)

    def _on_open(self, ws: Any) -> None:
        _ = ws
        self._open = True
        self._ready.set()

    def _on_message(self, ws: Any, message: str) -> None:
        _ = ws
        try:
            data = json.loads(message)
        except ValueError:
            logger.debug("[Deepgram] Ignoring non-JSON message")
            return
        if not isinstance(data, dict):
            return

        result = self._assembler.apply(data)
        if result is not None:
            self._post(RecognitionPartial(result))
        elif data.get("type") not in ("Results", None):
            logger.debug("[Deepgram] Message: %s", data.get("type"))

    def _on_error(self, ws: Any, error: Any) -> None:
        _ = ws
        logger.warning("[Deepgram] WebSocket error: %s", error)
        if self._open and not self._cancelled and not self._failed:
            self._failed = True
            cause = error if isinstance(error, BaseException) else None
            self._post(RecognitionFailure(f"Deepgram WebSocket error: {error}", cause=cause))
        self._ready.set()

    def _on_close(self, ws: Any, close_status_code: Any, close_msg: Any) -> None:
        _ = ws
        logger.info("[Deepgram] Closed: %s %s", close_status_code, close_msg)
        if self._open and not self._cancelled and not self._failed:
            final = self._assembler.finish()
            if final is not None:
                self._post(RecognitionFinal(final))
        self._ready.set()

    def _post(self, event: RecognitionEvent | None) -> None:
        """Thread-safe event posting to the asyncio queue."""
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    async def send_audio(self, frame: AudioFrame) -> None:
        if self._cancelled:
            return
        try:
            self._audio_q.put_nowait(frame)
        except queue.Full:
            logger.warning("[Deepgram] Send queue full, dropping audio")

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        while True:
            item = await self._events.get()
            if item is None:
                return
            yield item

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        with contextlib.suppress(queue.Full):
            self._audio_q.put_nowait(_STOP)
        if self._ws is not None:
            with contextlib.suppress(Exception):
                self._ws.close()
        thread, self._thread = self._thread, None
        if thread is not None and self._loop is not None:
            await self._loop.run_in_executor(None, thread.join, 5.0)
        logger.info("[Deepgram] Cancelled")
