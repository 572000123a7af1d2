from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from dataclasses import dataclass, field
from typing import TextIO

from live_transcription.core.stt.client import TranscriptionClient
from live_transcription.domain.errors import TranscriptionError
from live_transcription.domain.events import AuthorizationStatus

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SESSION_ERROR = 1
EXIT_NOT_AUTHORIZED = 3


@dataclass(slots=True)
class HeadlessTranscriptionRunner:
    """Streams one session to a text stream until it ends or the task is cancelled."""

    client: TranscriptionClient
    out: TextIO = field(default_factory=lambda: sys.stdout)

    async def run(self) -> int:
        status = await self.client.request_authorization()
        if status != AuthorizationStatus.AUTHORIZED:
            logger.error("Speech recognition is not authorized (%s)", status.value)
            return EXIT_NOT_AUTHORIZED

        try:
            stream = await self.client.start_session()
            async with contextlib.aclosing(stream):
                async for result in stream:
                    self._render(result.best_transcription.formatted_text, final=result.is_final)
        except asyncio.CancelledError:
            logger.info("Transcription stopped")
            return EXIT_OK
        except TranscriptionError as exc:
            logger.error("Transcription failed: %s (%s)", exc, exc.reason.value)
            return EXIT_SESSION_ERROR
        finally:
            await self.client.finish_session()
            self.out.write("\n")
            self.out.flush()

        return EXIT_OK

    def _render(self, text: str, *, final: bool) -> None:
        if final:
            self.out.write(f"\r{text}\n")
        else:
            self.out.write(f"\r{text}")
        self.out.flush()
