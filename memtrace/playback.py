"""Playback — cooperative autoplay, single-stepping and seeking over an Executor."""

from __future__ import annotations

import asyncio
import logging

from .effects import EffectSink, RunStatus
from .executor import Executor
from .run_types import PlaybackConfig
from .steps import ExecutionStep

logger = logging.getLogger(__name__)


class Playback:
    """Control-panel view of a run.

    Every step is applied atomically between suspension points; stepping
    backward discards the runtime state and replays from step 0.
    """

    def __init__(
        self,
        steps: list[ExecutionStep],
        effects: EffectSink | None = None,
        config: PlaybackConfig | None = None,
    ):
        self.config = config or PlaybackConfig()
        self.executor = Executor(steps, effects)
        self._resume = asyncio.Event()
        self._resume.set()
        self._cancelled = False

    @property
    def effects(self) -> EffectSink:
        return self.executor.effects

    @property
    def cursor(self) -> int:
        return self.executor.cursor

    @property
    def total(self) -> int:
        return self.executor.total

    @property
    def progress(self) -> float:
        return self.cursor / self.total if self.total else 1.0

    @property
    def done(self) -> bool:
        return self.executor.done

    def _finish_if_done(self) -> None:
        if self.executor.done:
            self.effects.set_status(RunStatus.COMPLETED)

    def step_forward(self) -> ExecutionStep | None:
        step = self.executor.step()
        self._finish_if_done()
        return step

    def step_back(self) -> None:
        """Rewind to just after the previous applied step."""
        applied = self.executor.applied
        target = applied[-2] + 1 if len(applied) >= 2 else 0
        self.seek(target)

    def seek(self, index: int) -> None:
        self.executor.seek(index)
        self.effects.set_status(RunStatus.PAUSED if index else RunStatus.IDLE)
        self._finish_if_done()

    def reset(self) -> None:
        self._cancelled = False
        self._resume.set()
        self.executor.reset()

    def run_to_completion(self) -> None:
        self.effects.set_status(RunStatus.RUNNING)
        self.executor.run()
        self._finish_if_done()

    async def play(self, delay: float | None = None) -> None:
        """Apply one step, then wait ``delay`` seconds, until done, paused or cancelled."""
        delay = self.config.delay_seconds if delay is None else delay
        self._cancelled = False
        self.effects.set_status(RunStatus.RUNNING)
        try:
            while not self.executor.done:
                await self._resume.wait()
                if self._cancelled:
                    break
                self.executor.step()
                if self.executor.done:
                    break
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.info("Playback cancelled at step %d", self.cursor)
            self.effects.set_status(RunStatus.IDLE)
            raise
        except Exception:
            self.effects.set_status(RunStatus.ERROR)
            raise
        if self._cancelled:
            logger.info("Playback stopped at step %d", self.cursor)
            return
        self._finish_if_done()

    def pause(self) -> None:
        self._resume.clear()
        self.effects.set_status(RunStatus.PAUSED)

    def resume(self) -> None:
        self.effects.set_status(RunStatus.RUNNING)
        self._resume.set()

    def cancel(self) -> None:
        self._cancelled = True
        self._resume.set()
        self.effects.set_status(RunStatus.IDLE)
