"""Fixed-rate scheduler driving poll cycles."""

import asyncio
import enum
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class SchedulerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class PollScheduler:
    """Runs a cycle at start and then every ``interval`` seconds.

    Ticks sit on a fixed grid (start, start + interval, ...) so a slow or
    failing cycle never shifts later ones. A tick that arrives while an
    earlier cycle is still running starts a second, overlapping cycle. Slots
    missed while the event loop was blocked are skipped, not replayed.
    """

    def __init__(self, cycle: Callable[[], Awaitable[object]], interval: float) -> None:
        """Initialize scheduler with the cycle coroutine factory and period."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._cycle = cycle
        self._interval = interval
        self._state = SchedulerState.STOPPED
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._ticks = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def ticks(self) -> int:
        """Number of cycles started so far."""
        return self._ticks

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        """Start the first cycle now and arm the recurring timer."""
        if self._state is not SchedulerState.STOPPED:
            return
        self._state = SchedulerState.RUNNING
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        self._spawn_cycle()
        self._timer = loop.create_task(self._run_timer(started_at), name="poll-timer")
        logger.info("Scheduler started", interval_seconds=self._interval)

    async def _run_timer(self, started_at: float) -> None:
        loop = asyncio.get_running_loop()
        tick = 1
        while self._state is SchedulerState.RUNNING:
            deadline = started_at + tick * self._interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))
            if self._state is not SchedulerState.RUNNING:
                break
            self._spawn_cycle()
            # A stalled loop gets one late cycle, not one per missed slot
            next_tick = int((loop.time() - started_at) // self._interval) + 1
            if next_tick > tick + 1:
                logger.warning("Scheduler fell behind", skipped_ticks=next_tick - tick - 1)
            tick = max(tick + 1, next_tick)

    def _spawn_cycle(self) -> None:
        self._ticks += 1
        task = asyncio.get_running_loop().create_task(
            self._guarded_cycle(self._ticks), name=f"poll-cycle-{self._ticks}"
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _guarded_cycle(self, number: int) -> None:
        log = logger.bind(cycle=number)
        if len(self._in_flight) > 1:
            log.info("Cycle overlaps a previous one", in_flight=len(self._in_flight))
        try:
            await self._cycle()
        except asyncio.CancelledError:
            log.warning("Cycle cancelled")
            raise
        except Exception:
            log.exception("Cycle failed unexpectedly")

    async def stop(self, timeout: float = 10.0) -> None:
        """Cancel the timer, then wait up to ``timeout`` for in-flight cycles."""
        if self._state is not SchedulerState.RUNNING:
            return
        self._state = SchedulerState.STOPPING
        logger.info("Scheduler stopping", in_flight=len(self._in_flight))

        if self._timer is not None:
            self._timer.cancel()
            await asyncio.gather(self._timer, return_exceptions=True)
            self._timer = None

        pending = set(self._in_flight)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                logger.warning("Abandoning in-flight cycles", count=len(still_running))
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped", cycles=self._ticks)
