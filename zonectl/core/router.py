"""Event router: serialize concurrent producers into one ordered stream.

Producers call ``submit`` and get back a future; a single consumer task
applies events to the ``ModeStateMachine`` one at a time in enqueue order.
``Shutdown`` is the only event allowed to jump the queue.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from zonectl.core.events import HVACEvent, Shutdown, event_name
from zonectl.core.exceptions import EventRejected, StateCorruption
from zonectl.core.state_machine import EventOutcome, ModeStateMachine

logger = logging.getLogger(__name__)

_SHUTDOWN_PRIORITY = 0
_NORMAL_PRIORITY = 1

FatalHook = Callable[[StateCorruption], Awaitable[None]]


@dataclass(order=True, slots=True)
class _Envelope:
    priority: int
    seq: int
    event: HVACEvent = field(compare=False)
    future: asyncio.Future[EventOutcome] = field(compare=False)


class EventRouter:
    """Single-consumer queue in front of the mode state machine."""

    def __init__(self, machine: ModeStateMachine, *, on_fatal: FatalHook | None = None) -> None:
        self._machine = machine
        self._on_fatal = on_fatal
        self._queue: asyncio.PriorityQueue[_Envelope] = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._halted: StateCorruption | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def halted(self) -> bool:
        return self._halted is not None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._consume(), name="zonectl-event-router")
        logger.info("Event router started")

    async def stop(self) -> None:
        """Stop the consumer; anything still queued is rejected."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._reject_pending("event router stopped")
        logger.info("Event router stopped")

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------
    def submit(self, event: HVACEvent) -> asyncio.Future[EventOutcome]:
        """Enqueue *event* without blocking. The future never raises."""

        loop = asyncio.get_running_loop()
        future: asyncio.Future[EventOutcome] = loop.create_future()
        name = event_name(event)
        if self._halted is not None:
            future.set_result(
                EventOutcome(name, False, error=f"controller halted: {self._halted}")
            )
            return future
        priority = _SHUTDOWN_PRIORITY if isinstance(event, Shutdown) else _NORMAL_PRIORITY
        self._queue.put_nowait(_Envelope(priority, next(self._seq), event, future))
        logger.debug("Queued %s (depth %d)", name, self._queue.qsize())
        return future

    def submit_threadsafe(self, event: HVACEvent) -> None:
        """Enqueue from a thread that does not own the router's loop."""

        if self._loop is None:
            raise RuntimeError("event router has not been started")
        self._loop.call_soon_threadsafe(self.submit, event)

    async def send(self, event: HVACEvent) -> EventOutcome:
        return await self.submit(event)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------
    async def _consume(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                outcome = await self._process(envelope.event)
            except asyncio.CancelledError:
                stopped = EventOutcome(event_name(envelope.event), False, error="event router stopped")
                self._resolve(envelope, stopped)
                raise
            except StateCorruption as exc:
                failed = EventOutcome(event_name(envelope.event), False, error=str(exc))
                self._resolve(envelope, failed)
                await self._halt(exc)
                return
            finally:
                self._queue.task_done()
            self._resolve(envelope, outcome)

    @staticmethod
    def _resolve(envelope: _Envelope, outcome: EventOutcome) -> None:
        if not envelope.future.done():
            envelope.future.set_result(outcome)

    async def _process(self, event: HVACEvent) -> EventOutcome:
        name = event_name(event)
        try:
            return await self._machine.handle(event)
        except EventRejected as exc:
            logger.warning("Rejected %s: %s", name, exc)
            return EventOutcome(name, False, error=str(exc))
        except StateCorruption:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while handling %s", name)
            return EventOutcome(name, False, error=str(exc) or type(exc).__name__)

    async def _halt(self, exc: StateCorruption) -> None:
        self._halted = exc
        logger.critical("State corruption, halting event processing: %s", exc)
        self._reject_pending(f"controller halted: {exc}")
        if self._on_fatal is not None:
            try:
                await self._on_fatal(exc)
            except Exception:
                logger.exception("Fatal hook failed")

    def _reject_pending(self, reason: str) -> None:
        while not self._queue.empty():
            envelope = self._queue.get_nowait()
            self._queue.task_done()
            self._resolve(envelope, EventOutcome(event_name(envelope.event), False, error=reason))


__all__ = ["EventRouter", "FatalHook"]
