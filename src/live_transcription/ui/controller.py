from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from live_transcription.core.stt.client import TranscriptionClient
from live_transcription.domain.events import AuthorizationStatus

logger = logging.getLogger(__name__)

AUTHORIZATION_DENIED_MESSAGE = "You denied access to speech recognition or it is not available"
TRANSCRIPTION_ERROR_MESSAGE = "An error occurred while transcribing"


class RecordingState(str, Enum):
    NOT_RECORDING = "not_recording"
    RECORDING = "recording"


@dataclass(slots=True)
class RecordingController:
    """Headless presentation state for a record/stop toggle.

    `handle_recording` either stops the running session or, when authorized,
    starts one and consumes its stream until it ends. A stop request arriving
    from another task ends that stream cleanly.
    """

    client: TranscriptionClient
    on_change: Callable[[RecordingController], None] | None = field(default=None, repr=False)

    is_recording: bool = False
    transcribed_text: str = ""
    alert_message: str | None = None

    @property
    def state(self) -> RecordingState:
        return RecordingState.RECORDING if self.is_recording else RecordingState.NOT_RECORDING

    @property
    def label_text(self) -> str:
        return "Stop Recording" if self.is_recording else "Start Recording"

    async def handle_recording(self) -> None:
        if self.is_recording:
            await self.stop_recording()
            return
        if not await self._check_authorization():
            return
        await self._record()

    async def stop_recording(self) -> None:
        await self.client.finish_session()
        self._update(is_recording=False)

    def dismiss_alert(self) -> None:
        self._update(alert_message=None)

    async def _check_authorization(self) -> bool:
        status = await self.client.request_authorization()
        if status == AuthorizationStatus.AUTHORIZED:
            return True
        logger.info("Speech recognition not authorized (%s)", status.value)
        self._update(alert_message=AUTHORIZATION_DENIED_MESSAGE)
        return False

    async def _record(self) -> None:
        self._update(is_recording=True)
        try:
            stream = await self.client.start_session()
            async with contextlib.aclosing(stream):
                async for result in stream:
                    self._update(transcribed_text=result.best_transcription.formatted_text)
        except Exception as exc:
            logger.warning("Transcription stream failed: %s", exc)
            self._update(alert_message=TRANSCRIPTION_ERROR_MESSAGE)
        finally:
            self._update(is_recording=False)

    def _update(self, **changes: object) -> None:
        for name, value in changes.items():
            setattr(self, name, value)
        if self.on_change is not None:
            self.on_change(self)
