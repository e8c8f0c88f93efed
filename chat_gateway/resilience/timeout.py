"""Cancellation signals and deadline composition.

A CancellationSignal is the caller's handle for abandoning a call. The
TimeoutComposer merges it with a per-call deadline into a DerivedSignal
that fires on whichever comes first, and remembers which one it was:
TimeoutExceeded when the timer fired, Cancelled when the caller did.

Every suspension point in the pipeline runs under DerivedSignal.run() or
DerivedSignal.sleep(), so a fired signal actively cancels the pending
network operation instead of letting it finish in the background.
"""

import asyncio
import threading
from collections.abc import Awaitable, Callable
from typing import TypeVar

from chat_gateway.errors import Cancelled, TimeoutExceeded

T = TypeVar("T")


class CancellationSignal:
    """Caller-owned cancellation flag that can be awaited.

    cancel() is safe to call from any thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback to run on cancel; runs now if already cancelled.

        Returns a function that unregisters it.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class DerivedSignal:
    """Fires when the caller cancels or the deadline elapses.

    Use as an async context manager; the timer and the caller subscription
    are released on exit.
    """

    def __init__(self, caller: CancellationSignal | None, timeout: float):
        self._caller = caller
        self._timeout = timeout
        self._lock = threading.Lock()
        self._fired_by: str | None = None
        self._deadline: float = 0.0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event: asyncio.Event | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._unsubscribe: Callable[[], None] = lambda: None

    async def __aenter__(self) -> "DerivedSignal":
        self._loop = asyncio.get_running_loop()
        self._event = asyncio.Event()
        self._deadline = self._loop.time() + self._timeout
        self._timer = self._loop.call_at(self._deadline, self._fire, "timeout")
        if self._caller is not None:
            self._unsubscribe = self._caller.add_callback(self._on_caller_cancel)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._unsubscribe()

    def _on_caller_cancel(self) -> None:
        # May arrive from a foreign thread
        if self._loop is None or self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._fire("caller")
        else:
            self._loop.call_soon_threadsafe(self._fire, "caller")

    def _fire(self, source: str) -> None:
        with self._lock:
            if self._fired_by is not None:
                return
            # Timer wins ties: a caller cancel observed at or after the
            # deadline counts as a timeout.
            if source == "caller" and self._loop.time() >= self._deadline:
                source = "timeout"
            self._fired_by = source
        self._event.set()

    @property
    def fired(self) -> bool:
        return self._fired_by is not None

    def was_timeout(self) -> bool:
        return self._fired_by == "timeout"

    def raise_if_fired(self) -> None:
        if self._fired_by is None:
            return
        if self.was_timeout():
            raise TimeoutExceeded(f"Request timed out after {self._timeout}s")
        raise Cancelled("Request cancelled by caller")

    async def run(self, aw: Awaitable[T]) -> T:
        """Await aw unless the signal fires first, in which case aw is cancelled."""
        task = asyncio.ensure_future(aw)
        if self.fired:
            await _cancel_and_wait(task)
            self.raise_if_fired()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                await _cancel_and_wait(task)

        if not task.cancelled():
            return task.result()
        self.raise_if_fired()
        raise Cancelled("Request cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds, waking early (and raising) if the signal fires."""
        self.raise_if_fired()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_fired()


async def _cancel_and_wait(task: asyncio.Future) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        if task.cancelled():
            return
        raise
    except Exception:
        # The task failed while being torn down; the signal's error wins.
        return


def compose(caller: CancellationSignal | None, timeout: float) -> DerivedSignal:
    """Merge a caller signal with a per-call deadline of timeout seconds."""
    return DerivedSignal(caller, timeout)
