"""One-shot, delayed and periodic timers driven by a background event loop."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
import weakref
from collections.abc import Callable

_log = logging.getLogger(__name__)

TimerTask = Callable[[], None]


class _Handle:
    __slots__ = ("callback", "cancelled")

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class _EventLoop:
    """A minimal scheduler running callbacks at given monotonic times."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: list[tuple[float, int, _Handle]] = []
        self._counter = itertools.count()
        self._stopped = False

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> _Handle:
        handle = _Handle(callback)
        with self._cond:
            when = time.monotonic() + max(delay_s, 0.0)
            heapq.heappush(self._queue, (when, next(self._counter), handle))
            self._cond.notify_all()
        return handle

    def _next_due(self) -> _Handle | None:
        with self._cond:
            while True:
                if self._stopped:
                    return None
                if not self._queue:
                    self._cond.wait()
                    continue
                when, _, handle = self._queue[0]
                if handle.cancelled:
                    heapq.heappop(self._queue)
                    continue
                now = time.monotonic()
                if when <= now:
                    heapq.heappop(self._queue)
                    return handle
                self._cond.wait(when - now)

    def run(self) -> None:
        """Run due callbacks until :meth:`stop` is called."""
        while (handle := self._next_due()) is not None:
            handle.callback()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()

    def reset(self) -> None:
        with self._cond:
            self._stopped = False


class Timer:
    """Runs a task once, after a delay, or periodically."""

    def __init__(
        self, loop: _EventLoop, task: TimerTask | None, period_ms: int, delay_ms: int = 0
    ) -> None:
        self._loop = loop
        self._task = task
        self._period_ms = period_ms
        self._delay_ms = delay_ms
        self._running = False
        self._lock = threading.Lock()
        self._delay_handle: _Handle | None = None
        self._timer_handle: _Handle | None = None

    @property
    def period_ms(self) -> int:
        return self._period_ms

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @property
    def timer_task(self) -> TimerTask | None:
        return self._task

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the timer; a second call while running does nothing."""
        with self._lock:
            if self._running:
                return
            self._running = True
        if self._delay_ms > 0:
            self._start_delay_task()
        elif self._period_ms > 0:
            self._start_period_task()
        else:
            self._execute_task()

    def stop(self) -> None:
        """Stop the timer and cancel anything scheduled."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._loop.stop()
            for handle in (self._delay_handle, self._timer_handle):
                if handle is not None:
                    handle.cancel()

    def _start_delay_task(self) -> None:
        ref = weakref.ref(self)

        def on_delay() -> None:
            timer = ref()
            if timer is None or not timer._running:
                return
            if timer._period_ms > 0:
                timer._start_period_task()
            else:
                timer._execute_task()

        with self._lock:
            if self._running:
                self._delay_handle = self._loop.call_later(self._delay_ms / 1000, on_delay)

    def _start_period_task(self) -> None:
        ref = weakref.ref(self)

        def on_period() -> None:
            timer = ref()
            if timer is None or not timer._running:
                return
            timer._execute_task()
            timer._start_period_task()

        with self._lock:
            if self._running:
                self._timer_handle = self._loop.call_later(self._period_ms / 1000, on_period)

    def _execute_task(self) -> None:
        if self._task is None:
            return
        try:
            self._task()
        except Exception as exc:  # a failing task must not kill the timer thread
            _log.warning("[Timer] timer task exception what=%s", exc)


class TimerFactory:
    """Creates timers sharing one event loop, running it on a worker thread if owned."""

    def __init__(self, loop: _EventLoop | None = None) -> None:
        self._running = False
        self._thread_name = "timerFactory"
        self._worker: threading.Thread | None = None
        if loop is None:
            self._loop = _EventLoop()
            self.start_thread()
        else:
            self._loop = loop

    def __enter__(self) -> TimerFactory:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_thread()

    def create_timer(self, task: TimerTask | None, period_ms: int, delay_ms: int = 0) -> Timer:
        """Return a new, not yet started timer on this factory's loop."""
        return Timer(self._loop, task, period_ms, delay_ms)

    def start_thread(self) -> None:
        """Start the worker thread that drives the event loop."""
        if self._worker is not None or self._running:
            return
        self._running = True
        _log.info("[startThread] start the timer thread")
        self._worker = threading.Thread(target=self._work, name=self._thread_name, daemon=True)
        self._worker.start()

    def _work(self) -> None:
        _log.info("[startThread] the timer thread start threadName=%s", self._thread_name)
        while self._running:
            try:
                self._loop.run()
                if not self._running:
                    break
            except Exception as exc:
                _log.warning("[startThread] Exception in Worker Thread of timer error=%s", exc)
            self._loop.reset()
        _log.info("[startThread] the timer thread stop")

    def stop_thread(self) -> None:
        """Stop the event loop and wait for the worker thread to finish."""
        worker = self._worker
        if worker is None:
            return
        self._running = False
        _log.info("[stopThread] stop the timer thread")
        self._loop.stop()
        if worker is not threading.current_thread():
            worker.join()
            self._worker = None