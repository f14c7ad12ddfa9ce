"""Progress reporting for disk image builds.

Builds report ProgressEvent values tagged with a BuildStage. The message is
an annotation for humans; consumers should key off the stage and fraction.

Events are delivered on the event loop that started the build. Worker
threads (tool runs, file copies) hand their events over with
call_soon_threadsafe, so sinks never need their own locking.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from apptodmg.types import BuildStage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """A single progress notification.

    Attributes:
        stage: Pipeline stage the build is in.
        message: Human-readable annotation.
        tool_output: True when message is verbatim external tool output.
    """

    stage: BuildStage
    message: str
    tool_output: bool = False

    @property
    def fraction(self) -> float:
        return self.stage.fraction

    def __str__(self) -> str:
        return self.message


ProgressSink = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Tracks the current stage and forwards events to a sink."""

    def __init__(
        self,
        sink: ProgressSink | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._sink = sink
        self._loop = loop
        self.stage = BuildStage.VALIDATING

    def advance(self, stage: BuildStage, message: str) -> None:
        """Move to a new stage and announce it."""
        self.stage = stage
        logger.info("[%s] %s", stage.value, message)
        self._emit(ProgressEvent(stage, message))

    def info(self, message: str) -> None:
        """Report a message within the current stage."""
        logger.info("[%s] %s", self.stage.value, message)
        self._emit(ProgressEvent(self.stage, message))

    def tool_output(self, text: str) -> None:
        """Forward external tool output verbatim."""
        logger.debug("[%s] tool output: %s", self.stage.value, text)
        self._emit(ProgressEvent(self.stage, text, tool_output=True))

    def _emit(self, event: ProgressEvent) -> None:
        if self._sink is None:
            return
        if self._loop is None or self._on_loop():
            self._sink(event)
        else:
            self._loop.call_soon_threadsafe(self._sink, event)

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False


__all__ = ["ProgressEvent", "ProgressReporter", "ProgressSink"]
