"""
Scheduler: where deferred exit deliveries go.

Inside a running asyncio loop, deferrals use ``loop.call_soon``. Outside
one, every exec() opens a session on the process-local TickQueue and gets
its own Tick. What a machine defers lands on its own Tick and runs when
that exec() has finished its synchronous work, so nested and top-level
calls behave the same way.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Deque, Iterator, List, Optional, Protocol, Tuple, Union

logger = logging.getLogger(__name__)


class Deferrer(Protocol):
    def defer(self, callback: Callable[..., Any], *args: Any) -> None: ...


class Scheduler(Protocol):
    def defer(self, callback: Callable[..., Any], *args: Any) -> None: ...

    def session(self) -> ContextManager[Deferrer]: ...


class Tick:
    """Callbacks deferred by one session, run in FIFO order."""

    def __init__(self, owner: Optional["TickQueue"] = None) -> None:
        self._callbacks: Deque[Tuple[Callable[..., Any], Tuple[Any, ...]]] = deque()
        self._owner = owner
        self.closed = False

    @property
    def pending(self) -> int:
        return len(self._callbacks)

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        # A closed session hands late deferrals to whoever is running now.
        if self.closed and self._owner is not None:
            self._owner.defer(callback, *args)
            return
        self._callbacks.append((callback, args))

    def run_until_idle(self) -> int:
        """Run queued callbacks, including ones they enqueue. Returns how many ran.

        A raising callback does not stop the drain: the first exception is
        re-raised once the Tick is empty, later ones are logged.
        """
        ran = 0
        failure: Optional[Exception] = None
        while self._callbacks:
            callback, args = self._callbacks.popleft()
            ran += 1
            try:
                callback(*args)
            except Exception as exc:
                if failure is None:
                    failure = exc
                else:
                    logger.warning("Deferred callback raised after an earlier failure.", exc_info=True)
        if failure is not None:
            raise failure
        return ran

    def discard(self) -> int:
        dropped = len(self._callbacks)
        self._callbacks.clear()
        return dropped


class TickQueue:
    """Session-scoped Ticks plus a base Tick for deferrals made outside any session."""

    def __init__(self) -> None:
        self._base = Tick()
        self._open: List[Tick] = []

    @property
    def pending(self) -> int:
        return self._base.pending + sum(tick.pending for tick in self._open)

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        target = self._open[-1] if self._open else self._base
        target.defer(callback, *args)

    def run_until_idle(self) -> int:
        return self._base.run_until_idle()

    @contextmanager
    def session(self) -> Iterator[Tick]:
        """Open a Tick; it drains on a clean exit and is discarded if the body raises."""
        tick = Tick(self)
        self._open.append(tick)
        try:
            yield tick
            tick.run_until_idle()
        except BaseException:
            dropped = tick.discard()
            if dropped:
                logger.warning("Discarding %d deferred callback(s) of a failed session.", dropped)
            raise
        finally:
            tick.closed = True
            self._open.remove(tick)
        if not self._open:
            self._base.run_until_idle()


class LoopScheduler:
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def defer(self, callback: Callable[..., Any], *args: Any) -> None:
        self._loop.call_soon(callback, *args)

    @contextmanager
    def session(self) -> Iterator["LoopScheduler"]:
        yield self


_default_queue = TickQueue()


def default_queue() -> TickQueue:
    return _default_queue


def get_scheduler() -> Union[LoopScheduler, TickQueue]:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return _default_queue
    return LoopScheduler(loop)
