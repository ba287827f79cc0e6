#!/usr/bin/env python3
"""Single-lane asyncio work queue for side-effecting action execution."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from actionflow_core.common import get_logger

logging = get_logger(name="core.execution_queue")

WorkFactory = Callable[[], Awaitable[object]]


@dataclass
class _WorkItem:
    label: str
    work: WorkFactory | None = None
    callback: Callable[[], None] | None = None
    done: asyncio.Future[None] | None = field(default=None, repr=False)


class ExecutionQueue:
    """Run submitted units one at a time, in submission order.

    A failing unit is logged and never stops the consumer, so one bad action
    cannot wedge the pipeline.
    """

    def __init__(self) -> None:
        """Initialize an idle queue; the consumer starts on first use."""
        self._queue: asyncio.Queue[_WorkItem] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._current: str | None = None

    @property
    def pending(self) -> int:
        """Number of queued units that have not finished yet."""
        if self._queue is None:
            return 0
        return self._queue.qsize() + (1 if self._current is not None else 0)

    @property
    def current(self) -> str | None:
        """Label of the unit currently executing, if any."""
        return self._current

    async def submit(self, work: WorkFactory, *, label: str = "work") -> None:
        """Append a unit to the tail and wait until it has run."""
        queue = self._ensure_consumer()
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        queue.put_nowait(_WorkItem(label=label, work=work, done=done))
        logging.trace("Queued {} ({} pending)", label, queue.qsize())
        await done

    def after_pending(self, callback: Callable[[], None], *, label: str = "marker") -> bool:
        """Run callback once every unit queued so far has drained.

        Returns:
            False when no event loop is running and the callback was skipped.
        """
        try:
            queue = self._ensure_consumer()
        except RuntimeError:
            logging.debug("No running loop; skipping {}", label)
            return False
        queue.put_nowait(_WorkItem(label=label, callback=callback))
        return True

    async def join(self) -> None:
        """Wait until every queued unit has finished."""
        if self._queue is None:
            return
        await self._queue.join()

    async def close(self) -> None:
        """Stop the consumer task."""
        consumer = self._consumer
        self._consumer = None
        self._queue = None
        self._loop = None
        if consumer is None or consumer.done():
            return
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass

    def _ensure_consumer(self) -> asyncio.Queue[_WorkItem]:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._queue is None:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._consumer = None
        if self._consumer is None or self._consumer.done():
            self._consumer = loop.create_task(self._consume(self._queue))
        return self._queue

    async def _consume(self, queue: asyncio.Queue[_WorkItem]) -> None:
        while True:
            item = await queue.get()
            self._current = item.label
            try:
                if item.callback is not None:
                    item.callback()
                elif item.work is not None:
                    await item.work()
            except Exception as exc:
                logging.error("Action failed: {}: {}", item.label, exc)
            finally:
                self._current = None
                if item.done is not None and not item.done.done():
                    item.done.set_result(None)
                queue.task_done()


__all__ = ["ExecutionQueue", "WorkFactory"]
