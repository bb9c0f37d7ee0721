"""Periodic reporting of request counts, data volume and throughput."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass

from tlsnode.timer import Timer, TimerFactory

_log = logging.getLogger(__name__)


def calc_avg_rate(data: int, interval_ms: int) -> float:
    """Return the average rate in Mb/s of ``data`` bytes over ``interval_ms``."""
    if interval_ms > 0:
        return data * 8 * 1000 / 1024 / 1024 / interval_ms
    return 0.0


def calc_avg_qps(request_count: int, interval_ms: int) -> int:
    """Return the average requests per second over ``interval_ms``."""
    if interval_ms > 0:
        return request_count * 1000 // interval_ms
    return 0


@dataclass
class RateReporterStat:
    """Totals since creation and counts since the last flush."""

    total_data_size: int = 0
    total_failed_data_size: int = 0
    last_total_data_size: int = 0
    last_total_failed_data_size: int = 0
    total_count: int = 0
    total_failed_count: int = 0
    last_count: int = 0
    last_failed_count: int = 0


class RateReporter:
    """Collects request statistics and logs them every ``interval_ms``."""

    def __init__(self, module_name: str, interval_ms: int) -> None:
        self.module_name = module_name
        self.interval_ms = interval_ms
        self._stat = RateReporterStat()
        self._lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._factory: TimerFactory | None = None
        self._timer: Timer | None = None

    def __enter__(self) -> RateReporter:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def stat(self) -> RateReporterStat:
        """A snapshot of the current statistics."""
        with self._lock:
            return dataclasses.replace(self._stat)

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Start periodic reporting; does nothing if already started."""
        with self._timer_lock:
            if self._timer is not None:
                return
            self._factory = TimerFactory()
            self._timer = self._factory.create_timer(self._on_timeout, self.interval_ms)
            self._timer.start()

    def stop(self) -> None:
        """Stop periodic reporting."""
        with self._timer_lock:
            timer, factory = self._timer, self._factory
            self._timer = None
            self._factory = None
        if timer is not None:
            timer.stop()
        if factory is not None:
            factory.stop_thread()

    def _on_timeout(self) -> None:
        self.report()
        self.flush()

    def report(self) -> str:
        """Log the counts since the last flush and return the logged line."""
        stat = self.stat
        message = (
            f"[RateReporter][{self.module_name}]"
            f" lastCount={stat.last_count}"
            f" lastTotalDataSize={stat.last_total_data_size}"
            f" lastFailedCount={stat.last_failed_count}"
            f" lastTotalFailedDataSize={stat.last_total_failed_data_size}"
            f" lastRate(Mb/s)={calc_avg_rate(stat.last_total_data_size, self.interval_ms)}"
            f" lastQPS(request/s)={calc_avg_qps(stat.last_count, self.interval_ms)}"
        )
        _log.info(message)
        return message

    def flush(self) -> None:
        """Reset the counts of the current interval."""
        with self._lock:
            self._stat.last_count = 0
            self._stat.last_failed_count = 0
            self._stat.last_total_data_size = 0
            self._stat.last_total_failed_data_size = 0

    def update(self, data_size: int, success: bool) -> None:
        """Record one request of ``data_size`` bytes."""
        with self._lock:
            if success:
                self._stat.total_count += 1
                self._stat.last_count += 1
                self._stat.total_data_size += data_size
                self._stat.last_total_data_size += data_size
            else:
                self._stat.total_failed_count += 1
                self._stat.last_failed_count += 1
                self._stat.total_failed_data_size += data_size
                self._stat.last_total_failed_data_size += data_size


class RateReporterFactory:
    """Creates rate reporters."""

    @staticmethod
    def build(module_name: str, interval_ms: int) -> RateReporter:
        return RateReporter(module_name, interval_ms)