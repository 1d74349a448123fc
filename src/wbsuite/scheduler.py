from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Hashable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def _thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


@dataclass(eq=False)
class _PendingTask:
    callback: Callable[[], None]
    timer: TimerHandle | None = None

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()


class DebounceScheduler:
    """
    Cancellable delayed tasks keyed by an arbitrary key (a book name).

    At most one task is pending per key: scheduling again cancels and
    replaces the previous one. Callbacks run while holding ``lock`` so a
    caller that holds the same lock never observes a task half-way through
    firing.
    """

    def __init__(
        self,
        *,
        timer_factory: TimerFactory | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self.lock = lock if lock is not None else threading.RLock()
        self._timer_factory = timer_factory or _thread_timer
        self._pending: dict[Hashable, _PendingTask] = {}
        self._closed = False

    def schedule(self, key: Hashable, delay: float, callback: Callable[[], None]) -> None:
        with self.lock:
            if self._closed:
                raise RuntimeError("Scheduler has been shut down.")
            previous = self._pending.pop(key, None)
            if previous is not None:
                previous.cancel()
            task = _PendingTask(callback=callback)
            task.timer = self._timer_factory(delay, lambda: self._fire(key, task))
            self._pending[key] = task
            task.timer.start()

    def _fire(self, key: Hashable, task: _PendingTask) -> None:
        with self.lock:
            if self._pending.get(key) is not task:
                return
            del self._pending[key]
            try:
                task.callback()
            except Exception:
                logger.exception("Debounced task for %r failed", key)

    def pending(self, key: Hashable) -> bool:
        with self.lock:
            return key in self._pending

    def cancel(self, key: Hashable) -> bool:
        with self.lock:
            task = self._pending.pop(key, None)
            if task is None:
                return False
            task.cancel()
            return True

    def shutdown(self) -> None:
        with self.lock:
            self._closed = True
            tasks = list(self._pending.values())
            self._pending.clear()
        for task in tasks:
            task.cancel()


__all__ = ["DebounceScheduler", "TimerFactory", "TimerHandle"]
