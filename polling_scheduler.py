from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional


SleepFn = Callable[[float], Awaitable[Any]]

DEFAULT_REFRESH_PERIOD_S = 20.0
DEFAULT_TICK_PERIOD_S = 60.0


class IntervalTask:
    """Run ``callback`` every ``period_s`` seconds on the event loop.

    Callback errors are logged and the loop keeps going; the next tick is the
    retry. Once ``stop()`` returns the callback is never invoked again.
    """

    def __init__(
        self,
        name: str,
        period_s: float,
        callback: Callable[[], Any],
        run_immediately: bool = False,
        repeat: bool = True,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.name = name
        self.period_s = period_s
        self.run_immediately = run_immediately
        self.repeat = repeat
        self.fired = 0
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopped = True

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=f"interval:{self.name}")

    def stop(self) -> Optional[asyncio.Task]:
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    async def _run(self) -> None:
        if self.run_immediately:
            await self._fire()
        if not self.repeat:
            return
        while not self._stopped:
            await self._sleep(self.period_s)
            if self._stopped:
                return
            await self._fire()

    async def _fire(self) -> None:
        if self._stopped:
            return
        self.fired += 1
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            print(f"[scheduler] {self.name} callback failed: {exc}")


class PollingScheduler:
    """Owns the location refresh task and the wall-clock tick task.

    ``poll_refresh`` controls whether the refresh repeats; when it is false
    the refresh runs once at start (a past day does not change).
    """

    def __init__(
        self,
        refresh: Callable[[], Any],
        tick: Callable[[], Any],
        refresh_period_s: float = DEFAULT_REFRESH_PERIOD_S,
        tick_period_s: float = DEFAULT_TICK_PERIOD_S,
        poll_refresh: bool = True,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.refresh_task = IntervalTask(
            "refresh",
            refresh_period_s,
            refresh,
            run_immediately=True,
            repeat=poll_refresh,
            sleep=sleep,
        )
        self.tick_task = IntervalTask("tick", tick_period_s, tick, sleep=sleep)
        self._pending: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self.refresh_task.running or self.tick_task.running

    def start(self) -> None:
        self.refresh_task.start()
        self.tick_task.start()

    def stop(self) -> None:
        self._pending = [t for t in self._pending if not t.done()]
        for interval in (self.refresh_task, self.tick_task):
            task = interval.stop()
            if task is not None:
                self._pending.append(task)

    async def aclose(self) -> None:
        """Stop and wait until the cancelled tasks have unwound."""
        self.stop()
        pending, self._pending = self._pending, []
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
