from __future__ import annotations

import asyncio
import gc
import threading
from dataclasses import dataclass, field

import numpy as np
import pytest

from live_transcription.core.audio.format import AudioFrame
from live_transcription.core.stt.session import SessionEngine
from live_transcription.domain.errors import (
    CaptureConfigError,
    CaptureStartError,
    RecognitionFailed,
    RecognitionUnavailable,
)
from live_transcription.domain.events import (
    AuthorizationStatus,
    RecognitionFailure,
    RecognitionFinal,
    RecognitionPartial,
)
from live_transcription.domain.models import Transcription, TranscriptionResult


def _result(text: str, *, final: bool = False) -> TranscriptionResult:
    return TranscriptionResult(best_transcription=Transcription(formatted_text=text), is_final=final)


def _partial(text: str) -> RecognitionPartial:
    return RecognitionPartial(_result(text))


def _final(text: str) -> RecognitionFinal:
    return RecognitionFinal(_result(text, final=True))


@dataclass(slots=True)
class FakeCapture:
    fail_configure: bool = False
    fail_start: bool = False
    configure_calls: int = 0
    start_calls: int = 0
    stop_calls: int = 0
    sink: object = None
    stop_gate: asyncio.Event | None = None

    async def configure_for_voice_capture(self) -> None:
        self.configure_calls += 1
        if self.fail_configure:
            raise RuntimeError("category rejected")

    async def start(self, sink) -> None:
        self.start_calls += 1
        if self.fail_start:
            raise RuntimeError("input node unavailable")
        self.sink = sink

    async def stop(self) -> None:
        self.stop_calls += 1
        self.sink = None
        if self.stop_gate is not None:
            await self.stop_gate.wait()


@dataclass(slots=True)
class FakeHandle:
    script: list
    hold_open: bool = False
    frames: list = field(default_factory=list)
    cancel_calls: int = 0

    async def send_audio(self, frame: AudioFrame) -> None:
        self.frames.append(frame)

    async def events(self):
        for event in self.script:
            yield event
        if self.hold_open:
            await asyncio.Event().wait()

    async def cancel(self) -> None:
        self.cancel_calls += 1


@dataclass(slots=True)
class FakeRecognition:
    script: list = field(default_factory=list)
    hold_open: bool = False
    unavailable: bool = False
    authorization: object = AuthorizationStatus.AUTHORIZED
    handles: list = field(default_factory=list)

    async def check_authorization(self):
        if isinstance(self.authorization, Exception):
            raise self.authorization
        return self.authorization

    async def begin_recognition(self) -> FakeHandle:
        if self.unavailable:
            raise RuntimeError("locale unsupported")
        handle = FakeHandle(script=list(self.script), hold_open=self.hold_open)
        self.handles.append(handle)
        return handle


async def _drain(stream, *, timeout_s: float = 1.0):
    items: list[TranscriptionResult] = []
    error: Exception | None = None

    async def run() -> None:
        nonlocal error
        try:
            async for item in stream:
                items.append(item)
        except Exception as exc:
            error = exc

    await asyncio.wait_for(run(), timeout=timeout_s)
    return items, error


async def _next(stream, *, timeout_s: float = 1.0):
    return await asyncio.wait_for(stream.__anext__(), timeout=timeout_s)


async def _wait_until(predicate, *, timeout_s: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout_s)


def test_happy_path_streams_partials_then_final_in_order():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(
            script=[_partial("Lorem"), _partial("Lorem ipsum"), _final("Lorem ipsum")]
        )
        engine = SessionEngine(capture=capture, recognition=recognition)

        items, error = await _drain(await engine.start_session())

        assert error is None
        assert [r.best_transcription.formatted_text for r in items] == ["Lorem", "Lorem ipsum", "Lorem ipsum"]
        assert [r.is_final for r in items] == [False, False, True]
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1
        assert not engine.is_active

    asyncio.run(run())


def test_events_after_final_are_not_published():
    async def run():
        recognition = FakeRecognition(script=[_partial("a"), _final("a b"), _partial("late")])
        engine = SessionEngine(capture=FakeCapture(), recognition=recognition)

        items, error = await _drain(await engine.start_session())

        assert error is None
        assert len(items) == 2
        assert sum(1 for r in items if r.is_final) == 1
        assert items[-1].is_final

    asyncio.run(run())


def test_backend_completion_without_final_ends_cleanly():
    async def run():
        capture = FakeCapture()
        engine = SessionEngine(capture=capture, recognition=FakeRecognition(script=[_partial("Hi")]))

        items, error = await _drain(await engine.start_session())

        assert error is None
        assert [r.is_final for r in items] == [False]
        assert capture.stop_calls == 1

    asyncio.run(run())


def test_mid_stream_failure_releases_once_and_raises():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(script=[_partial("Hello"), RecognitionFailure("connection reset")])
        engine = SessionEngine(capture=capture, recognition=recognition)

        items, error = await _drain(await engine.start_session())

        assert [r.best_transcription.formatted_text for r in items] == ["Hello"]
        assert isinstance(error, RecognitionFailed)
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1

        await engine.finish_session()
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1

    asyncio.run(run())


def test_capture_config_failure_yields_no_items_and_acquires_nothing():
    async def run():
        capture = FakeCapture(fail_configure=True)
        recognition = FakeRecognition(script=[_partial("never")])
        engine = SessionEngine(capture=capture, recognition=recognition)

        items, error = await _drain(await engine.start_session())

        assert items == []
        assert isinstance(error, CaptureConfigError)
        assert isinstance(error.__cause__, RuntimeError)
        assert recognition.handles == []
        assert capture.stop_calls == 0

    asyncio.run(run())


def test_capture_start_failure_releases_recognition_handle():
    async def run():
        capture = FakeCapture(fail_start=True)
        recognition = FakeRecognition(script=[_partial("too early")], hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        items, error = await _drain(await engine.start_session())

        assert items == []
        assert isinstance(error, CaptureStartError)
        assert recognition.handles[0].cancel_calls == 1
        assert capture.stop_calls == 1
        assert not engine.is_active

    asyncio.run(run())


def test_recognition_unavailable_releases_capture():
    async def run():
        capture = FakeCapture()
        engine = SessionEngine(capture=capture, recognition=FakeRecognition(unavailable=True))

        items, error = await _drain(await engine.start_session())

        assert items == []
        assert isinstance(error, RecognitionUnavailable)
        assert capture.start_calls == 0
        assert capture.stop_calls == 1

    asyncio.run(run())


def test_finish_mid_stream_completes_without_error():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(script=[_partial("Hello")], hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        first = await _next(stream)
        assert first.best_transcription.formatted_text == "Hello"
        assert engine.is_active

        await engine.finish_session()
        rest, error = await _drain(stream)

        assert rest == []
        assert error is None
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1
        assert not engine.is_active

    asyncio.run(run())


def test_finish_is_idempotent_and_safe_without_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        await engine.finish_session()

        stream = await engine.start_session()
        await _wait_until(lambda: capture.sink is not None)
        await engine.finish_session()
        await engine.finish_session()

        items, error = await _drain(stream)
        assert items == []
        assert error is None
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1

    asyncio.run(run())


def test_finish_before_driver_runs_still_ends_stream():
    async def run():
        capture = FakeCapture()
        engine = SessionEngine(capture=capture, recognition=FakeRecognition(hold_open=True))

        stream = await engine.start_session()
        await engine.finish_session()

        items, error = await _drain(stream)
        assert items == []
        assert error is None
        assert capture.configure_calls == capture.stop_calls

    asyncio.run(run())


def test_second_start_supersedes_active_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(script=[_partial("first")], hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        first_stream = await engine.start_session()
        assert (await _next(first_stream)).best_transcription.formatted_text == "first"

        second_stream = await engine.start_session()
        rest, error = await _drain(first_stream)
        assert rest == []
        assert error is None
        assert recognition.handles[0].cancel_calls == 1
        assert capture.stop_calls == 1

        assert (await _next(second_stream)).best_transcription.formatted_text == "first"
        assert engine.is_active
        await engine.finish_session()
        assert capture.configure_calls == 2
        assert capture.stop_calls == 2
        assert recognition.handles[1].cancel_calls == 1

    asyncio.run(run())


def test_closing_stream_tears_down_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(script=[_partial("Hello")], hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        await _next(stream)
        await stream.aclose()

        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1
        assert not engine.is_active

    asyncio.run(run())


def test_closing_stream_before_first_item_tears_down_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        await _wait_until(lambda: capture.sink is not None)
        await stream.aclose()

        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1
        assert not engine.is_active
        assert [r async for r in stream] == []

    asyncio.run(run())


def test_dropping_unread_stream_tears_down_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        await _wait_until(lambda: capture.sink is not None)
        del stream
        gc.collect()

        await _wait_until(lambda: not engine.is_active)
        await _wait_until(lambda: recognition.handles[0].cancel_calls == 1)
        assert capture.stop_calls == 1

    asyncio.run(run())


def test_cancelling_consumer_task_tears_down_session():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)
        stream = await engine.start_session()

        async def consume() -> None:
            async for _ in stream:
                pass

        consumer = asyncio.create_task(consume())
        await _wait_until(lambda: capture.sink is not None)
        consumer.cancel()
        await asyncio.wait({consumer})

        assert consumer.cancelled()
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1
        assert not engine.is_active

    asyncio.run(run())


@pytest.mark.parametrize(
    "terminal, expected_error",
    [
        (_final("Hello world"), None),
        (RecognitionFailure("connection reset"), RecognitionFailed),
    ],
)
def test_finish_after_backend_terminal_signal_is_a_no_op(terminal, expected_error):
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(script=[_partial("Hello"), terminal], hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        await _wait_until(lambda: capture.stop_calls == 1 and not engine.is_active)

        await engine.finish_session()
        items, error = await _drain(stream)

        assert items[0].best_transcription.formatted_text == "Hello"
        if expected_error is None:
            assert error is None
            assert [r.is_final for r in items] == [False, True]
        else:
            assert isinstance(error, expected_error)
            assert len(items) == 1
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1

    asyncio.run(run())


def test_finish_during_completion_teardown_waits_without_cancelling_driver():
    async def run():
        gate = asyncio.Event()
        capture = FakeCapture(stop_gate=gate)
        recognition = FakeRecognition(script=[_final("done")])
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        driver = engine._active.driver
        await _wait_until(lambda: capture.stop_calls == 1)

        finisher = asyncio.create_task(engine.finish_session())
        await asyncio.sleep(0.02)
        assert not finisher.done()
        assert not driver.done()

        gate.set()
        await asyncio.wait_for(finisher, timeout=1.0)

        assert driver.done() and not driver.cancelled()
        items, error = await _drain(stream)
        assert [r.is_final for r in items] == [True]
        assert error is None
        assert capture.stop_calls == 1
        assert recognition.handles[0].cancel_calls == 1

    asyncio.run(run())


def test_frames_reach_recognition_in_capture_order():
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(hold_open=True)
        engine = SessionEngine(capture=capture, recognition=recognition)

        stream = await engine.start_session()
        await _wait_until(lambda: capture.sink is not None)

        sink = capture.sink
        frames = [
            AudioFrame(samples=np.full((160,), i / 10, dtype=np.float32), sample_rate_hz=16000)
            for i in range(8)
        ]
        producer = threading.Thread(target=lambda: [sink(f) for f in frames])
        producer.start()
        producer.join()

        handle = recognition.handles[0]
        await _wait_until(lambda: len(handle.frames) == len(frames))
        assert [float(f.samples[0]) for f in handle.frames] == [float(f.samples[0]) for f in frames]

        await engine.finish_session()
        sink(frames[0])  # late device callback after detach
        await _drain(stream)
        assert len(handle.frames) == len(frames)

    asyncio.run(run())


@pytest.mark.parametrize(
    "reported, expected",
    [
        (AuthorizationStatus.AUTHORIZED, AuthorizationStatus.AUTHORIZED),
        (AuthorizationStatus.RESTRICTED, AuthorizationStatus.RESTRICTED),
        ("authorized", AuthorizationStatus.AUTHORIZED),
        (None, AuthorizationStatus.DENIED),
        (RuntimeError("prompt dismissed"), AuthorizationStatus.DENIED),
    ],
)
def test_request_authorization_never_raises(reported, expected):
    async def run():
        capture = FakeCapture()
        recognition = FakeRecognition(authorization=reported)
        engine = SessionEngine(capture=capture, recognition=recognition)

        assert await engine.request_authorization() == expected
        assert capture.configure_calls == 0
        assert recognition.handles == []

    asyncio.run(run())


def test_engine_rejects_invalid_queue_size():
    with pytest.raises(ValueError):
        SessionEngine(capture=FakeCapture(), recognition=FakeRecognition(), max_queued_frames=0)
