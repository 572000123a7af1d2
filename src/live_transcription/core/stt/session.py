from __future__ import annotations

import asyncio
import contextlib
import functools
import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterator

import janus

from live_transcription.core.audio.capture import CapturePort
from live_transcription.core.audio.format import AudioFrame
from live_transcription.core.stt.backend import RecognitionHandle, RecognitionPort
from live_transcription.domain.errors import (
    CaptureConfigError,
    CaptureStartError,
    RecognitionFailed,
    RecognitionUnavailable,
    TranscriptionError,
)
from live_transcription.domain.events import (
    AuthorizationStatus,
    RecognitionFailure,
    RecognitionFinal,
    RecognitionPartial,
    SessionState,
    TerminationReason,
)
from live_transcription.domain.models import TranscriptionResult

logger = logging.getLogger(__name__)

_BACKEND_DONE = object()


@dataclass(frozen=True, slots=True)
class _StreamEnd:
    error: Exception | None = None


@dataclass(slots=True, eq=False)
class _Session:
    session_id: int
    state: SessionState = SessionState.IDLE
    reason: TerminationReason | None = None
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)

    handle: RecognitionHandle | None = None
    frames: janus.Queue[AudioFrame] | None = None
    capture_configured: bool = False
    capture_running: bool = False
    sink_attached: bool = False

    driver: asyncio.Task[None] | None = None
    listener: asyncio.Task[None] | None = None
    pump: asyncio.Task[None] | None = None

    @property
    def is_live(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.STREAMING)


@contextlib.contextmanager
def _raising_as(error_cls: type[TranscriptionError], message: str) -> Iterator[None]:
    try:
        yield
    except error_cls:
        raise
    except Exception as exc:
        raise error_cls(f"{message}: {exc}") from exc


class TranscriptionStream:
    """Async iterator over the results of one session.

    Closing the stream, explicitly or by dropping the last reference to it,
    cancels the session. This holds before the first item is read as well.
    """

    def __init__(self, engine: SessionEngine, session: _Session) -> None:
        self._engine = engine
        self._session = session
        self._closed = False

    def __aiter__(self) -> TranscriptionStream:
        return self

    async def __anext__(self) -> TranscriptionResult:
        if self._closed:
            raise StopAsyncIteration
        try:
            item = await self._session.outbox.get()
        except asyncio.CancelledError:
            await self.aclose()
            raise
        if isinstance(item, _StreamEnd):
            self._closed = True
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._engine._close_stream(self._session)

    def __del__(self) -> None:
        if self._closed or not self._session.is_live:
            return
        self._closed = True
        driver = self._session.driver
        if driver is None:
            return
        loop = driver.get_loop()
        if not loop.is_closed():
            loop.call_soon_threadsafe(self._engine._schedule_close, self._session)


@dataclass(slots=True)
class SessionEngine:
    """Owns at most one capture/recognition session and streams its results.

    Every session runs a driver task which is the only writer of the session
    state. Capture frames and backend events are produced elsewhere and only
    enqueued; the driver consumes the backend events in arrival order.

    Calling `start_session` while a session is active finishes the active one
    first (its stream completes without error), then starts the new one.
    """

    capture: CapturePort
    recognition: RecognitionPort
    max_queued_frames: int = 256

    _active: _Session | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    _closers: set[asyncio.Task[None]] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.max_queued_frames <= 0:
            raise ValueError("max_queued_frames must be > 0")

    @property
    def is_active(self) -> bool:
        return self._active is not None and self._active.is_live

    async def request_authorization(self) -> AuthorizationStatus:
        try:
            status = await self.recognition.check_authorization()
        except Exception as exc:
            logger.warning(f"[Session] Authorization check failed: {exc}")
            return AuthorizationStatus.DENIED

        try:
            return AuthorizationStatus(status)
        except ValueError:
            logger.warning(f"[Session] Unknown authorization status {status!r} treated as denied")
            return AuthorizationStatus.DENIED

    async def start_session(self) -> TranscriptionStream:
        async with self._lock:
            if self._active is not None:
                logger.info(f"[Session] Superseding active session #{self._active.session_id}")
                await self._cancel(self._active)

            session = _Session(session_id=next(self._ids))
            self._active = session
            self._set_state(session, SessionState.STARTING)
            session.driver = asyncio.create_task(
                self._drive(session), name=f"transcription-session-{session.session_id}"
            )
        return TranscriptionStream(self, session)

    async def finish_session(self) -> None:
        async with self._lock:
            if self._active is None:
                return
            await self._cancel(self._active)

    async def _close_stream(self, session: _Session) -> None:
        if not session.is_live:
            return
        async with self._lock:
            await self._cancel(session)

    def _schedule_close(self, session: _Session) -> None:
        logger.info(f"[Session] #{session.session_id} stream dropped without closing")
        task = asyncio.ensure_future(self._close_stream(session))
        self._closers.add(task)
        task.add_done_callback(self._closers.discard)

    async def _cancel(self, session: _Session) -> None:
        driver = session.driver
        if driver is not None:
            if session.is_live and not driver.done():
                driver.cancel()
            await asyncio.wait({driver})
        await self._terminate(session, TerminationReason.CANCELLED)

    async def _drive(self, session: _Session) -> None:
        sid = session.session_id
        try:
            await self._acquire(session)
            self._set_state(session, SessionState.STREAMING)

            while True:
                event = await session.inbox.get()
                if event is _BACKEND_DONE:
                    logger.info(f"[Session] #{sid} backend finished without a final result")
                    await self._terminate(session, TerminationReason.COMPLETED)
                    return
                if isinstance(event, RecognitionPartial):
                    self._publish(session, event.result)
                elif isinstance(event, RecognitionFinal):
                    self._publish(session, event.result)
                    await self._terminate(session, TerminationReason.COMPLETED)
                    return
                elif isinstance(event, RecognitionFailure):
                    logger.error(f"[Session] #{sid} recognition failed: {event.message}")
                    error = RecognitionFailed(event.message)
                    error.__cause__ = event.cause
                    await self._terminate(session, TerminationReason.RECOGNITION_FAILED, error)
                    return
                else:
                    await self._terminate(
                        session,
                        TerminationReason.RECOGNITION_FAILED,
                        TypeError(f"Unknown RecognitionEvent: {type(event)}"),
                    )
                    return
        except asyncio.CancelledError:
            await self._terminate(session, TerminationReason.CANCELLED)
            raise
        except TranscriptionError as exc:
            logger.error(f"[Session] #{sid} could not start: {exc}")
            await self._terminate(session, exc.reason, exc)
        except Exception as exc:
            logger.exception(f"[Session] #{sid} unexpected error")
            error = RecognitionFailed(f"Unexpected session error: {exc}")
            error.__cause__ = exc
            await self._terminate(session, TerminationReason.RECOGNITION_FAILED, error)

    async def _acquire(self, session: _Session) -> None:
        with _raising_as(CaptureConfigError, "Could not configure audio capture"):
            await self.capture.configure_for_voice_capture()
        session.capture_configured = True

        with _raising_as(RecognitionUnavailable, "Could not begin recognition"):
            handle = await self.recognition.begin_recognition()
        session.handle = handle
        session.listener = asyncio.create_task(self._listen(session, handle))

        frames: janus.Queue[AudioFrame] = janus.Queue(maxsize=self.max_queued_frames)
        session.frames = frames
        session.sink_attached = True
        session.pump = asyncio.create_task(self._pump_frames(session, frames, handle))

        with _raising_as(CaptureStartError, "Could not start audio capture"):
            await self.capture.start(functools.partial(self._deliver_frame, session))
        session.capture_running = True

    def _deliver_frame(self, session: _Session, frame: AudioFrame) -> None:
        frames = session.frames
        if not session.sink_attached or frames is None:
            return
        try:
            frames.sync_q.put_nowait(frame)
        except janus.SyncQueueFull:
            logger.warning(f"[Session] #{session.session_id} frame queue full, dropping audio")
        except janus.SyncQueueShutDown:
            # Sink detached while a device callback was in flight.
            return

    async def _pump_frames(
        self, session: _Session, frames: janus.Queue[AudioFrame], handle: RecognitionHandle
    ) -> None:
        try:
            while True:
                frame = await frames.async_q.get()
                await handle.send_audio(frame)
        except asyncio.CancelledError:
            raise
        except janus.AsyncQueueShutDown:
            return
        except Exception as exc:
            session.inbox.put_nowait(RecognitionFailure(f"Failed to deliver audio: {exc}", cause=exc))

    async def _listen(self, session: _Session, handle: RecognitionHandle) -> None:
        try:
            async for event in handle.events():
                session.inbox.put_nowait(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            session.inbox.put_nowait(RecognitionFailure(f"Recognition backend error: {exc}", cause=exc))
            return
        session.inbox.put_nowait(_BACKEND_DONE)

    def _publish(self, session: _Session, result: TranscriptionResult) -> None:
        if session.state is not SessionState.STREAMING:
            return
        session.outbox.put_nowait(result)

    async def _terminate(
        self,
        session: _Session,
        reason: TerminationReason,
        error: Exception | None = None,
    ) -> None:
        if session.state in (SessionState.FINISHING, SessionState.TERMINATED):
            return
        self._set_state(session, SessionState.FINISHING)
        session.reason = reason
        try:
            await self._release(session)
        finally:
            self._set_state(session, SessionState.TERMINATED)
            logger.info(f"[Session] #{session.session_id} terminated ({reason.value})")
            if self._active is session:
                self._active = None
            session.outbox.put_nowait(_StreamEnd(error))

    async def _release(self, session: _Session) -> None:
        if session.capture_running:
            await self._stop_capture(session)

        session.sink_attached = False
        current = asyncio.current_task()
        tasks = [t for t in (session.pump, session.listener) if t is not None and t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        session.pump = None
        session.listener = None

        if session.frames is not None:
            frames, session.frames = session.frames, None
            frames.close()
            await frames.wait_closed()

        if session.handle is not None:
            handle, session.handle = session.handle, None
            try:
                await handle.cancel()
            except Exception as exc:
                logger.warning(f"[Session] #{session.session_id} failed to cancel recognition: {exc}")

        if session.capture_configured:
            await self._stop_capture(session)

    async def _stop_capture(self, session: _Session) -> None:
        session.capture_configured = False
        session.capture_running = False
        try:
            await self.capture.stop()
        except Exception as exc:
            logger.warning(f"[Session] #{session.session_id} failed to stop capture: {exc}")

    def _set_state(self, session: _Session, state: SessionState) -> None:
        if session.state == state:
            return
        old_state = session.state
        session.state = state
        logger.info(f"[Session] #{session.session_id} state: {old_state.name} -> {state.name}")
