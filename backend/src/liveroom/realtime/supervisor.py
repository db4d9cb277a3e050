"""Deferred work: the broadcaster reconnect grace timer and the scheduler behind it."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol, cast

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .rooms import Room


logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callback, *, name: str | None = None) -> ScheduledCall: ...


class AsyncioScheduledCall:
    """Handle for a coroutine callback running in its own task after a delay."""

    def __init__(self, task: "asyncio.Task[None] | None" = None) -> None:
        self._task = task
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Run callbacks on the running event loop, keeping a reference to each task."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(
        self, delay: float, callback: Callback, *, name: str | None = None
    ) -> AsyncioScheduledCall:
        handle = AsyncioScheduledCall()

        async def runner() -> None:
            await asyncio.sleep(max(delay, 0.0))
            if handle.cancelled():
                return
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled callback %s failed", name or callback)

        task = asyncio.create_task(runner(), name=name)
        handle._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


ExpireCallback = Callable[[str, ScheduledCall], Awaitable[None]]


class ReconnectSupervisor:
    """Start and cancel the per-room grace timer that follows a broadcaster disconnect.

    The timer handle is stored on the room itself. The expiry callback receives
    the handle that fired so the owner can ignore a stale timer that lost the
    race against a rejoin.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        grace_seconds: float,
        on_expire: ExpireCallback,
    ) -> None:
        self._scheduler = scheduler
        self.grace_seconds = float(grace_seconds)
        self._on_expire = on_expire

    def start(self, room: "Room") -> ScheduledCall:
        room_id = room.id
        handle: ScheduledCall | None = None

        async def fire() -> None:
            await self._on_expire(room_id, cast(ScheduledCall, handle))

        handle = self._scheduler.call_later(
            self.grace_seconds, fire, name=f"room-grace-{room_id}"
        )
        room.suspend(handle)
        logger.info(
            "Room %s waiting %.1fs for broadcaster %s to rejoin",
            room_id,
            self.grace_seconds,
            room.owner,
        )
        return handle

    def cancel(self, room: "Room") -> bool:
        handle = room.resume()
        if handle is None:
            return False
        handle.cancel()
        logger.info("Cancelled reconnect timer for room %s", room.id)
        return True

    @staticmethod
    def is_current(room: "Room", handle: ScheduledCall) -> bool:
        return room.reconnect_timer is handle and not handle.cancelled()


__all__ = [
    "AsyncioScheduledCall",
    "AsyncioScheduler",
    "ReconnectSupervisor",
    "ScheduledCall",
    "Scheduler",
]
