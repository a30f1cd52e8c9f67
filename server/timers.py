"""
Cancellable generation-keyed timers.

A GenerationTimer owns at most one pending callback. Every schedule() or
cancel() bumps the timer's generation, and a callback only runs if the
generation it was scheduled under is still current when its delay expires.
Superseded or cancelled callbacks are therefore guaranteed no-ops even if
the underlying task has already woken up.

Timers run on the asyncio event loop; scheduling requires a running loop.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[[int], Union[None, Awaitable[None]]]


class GenerationTimer:
    """
    Single-slot cancellable timer with a monotonically increasing generation.

    Usage:
        timer = GenerationTimer("jump_in")
        generation = timer.schedule(2.0, on_expire)
        ...
        if timer.is_current(generation):
            ...
        timer.cancel()
    """

    def __init__(self, name: str = "timer"):
        self.name = name
        self.generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def schedule(self, delay: float, callback: TimerCallback) -> int:
        """
        Schedule `callback(generation)` after `delay` seconds.

        Any previously pending callback is cancelled first.

        Returns:
            The generation this callback was scheduled under.
        """
        self._cancel_task()
        self.generation += 1
        generation = self.generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(delay, generation, callback),
            name=f"{self.name}-{generation}",
        )
        return generation

    def cancel(self) -> None:
        """Cancel the pending callback and invalidate its generation."""
        self._cancel_task()
        self.generation += 1

    def _cancel_task(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, delay: float, generation: int, callback: TimerCallback) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        if not self.is_current(generation):
            logger.debug(f"Timer {self.name} generation {generation} superseded, skipping")
            return

        self._task = None
        try:
            result: Any = callback(generation)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception(f"Timer {self.name} callback failed (generation {generation})")
