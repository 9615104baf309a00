"""
Timer registry — one live asyncio task per timer role.

Every countdown, holder-expiry, debounce and post-game hold in the
orchestrator goes through here, so re-arming a role always cancels the
previous handle first and a reset can tear everything down in one call.

Callbacks run under the orchestrator lock, the same lock every inbound
command takes, so a firing timer never interleaves with a chat command.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TimerRole(str, Enum):
    COUNTDOWN = "countdown"
    HOLDER_EXPIRY = "holder_expiry"
    AUTO_START_DEBOUNCE = "auto_start_debounce"
    RESULT_DISPLAY = "result_display"


TimerCallback = Callable[[], Awaitable[None]]


class TimerRegistry:

    def __init__(
        self,
        lock: asyncio.Lock,
        on_error: Optional[Callable[[TimerRole, Exception], Awaitable[None]]] = None,
    ):
        self._lock = lock
        self._on_error = on_error
        self._tasks: Dict[TimerRole, asyncio.Task] = {}

    def schedule(self, role: TimerRole, delay: float, callback: TimerCallback) -> None:
        """Arm `role` to run `callback` after `delay` seconds, replacing any prior handle."""
        self.cancel(role)
        self._tasks[role] = asyncio.create_task(
            self._fire(role, delay, callback), name=f"timer:{role.value}"
        )

    def cancel(self, role: TimerRole) -> None:
        task = self._tasks.pop(role, None)
        if task is None or task.done():
            return
        # A callback re-arming its own role must not cancel itself mid-flight;
        # dropping it from the map is enough, the new handle takes over.
        if task is asyncio.current_task():
            return
        task.cancel()

    def cancel_all(self) -> None:
        for role in list(self._tasks):
            self.cancel(role)

    def is_armed(self, role: TimerRole) -> bool:
        task = self._tasks.get(role)
        return task is not None and not task.done()

    async def _fire(self, role: TimerRole, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            me = asyncio.current_task()
            if self._tasks.get(role) is not me:
                return  # superseded while waiting for the lock
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("[timer] %s callback failed", role.value)
                if self._on_error is not None:
                    await self._on_error(role, exc)
            finally:
                if self._tasks.get(role) is me:
                    del self._tasks[role]
