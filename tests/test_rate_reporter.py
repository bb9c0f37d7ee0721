import time

import pytest

from tlsnode.rate_reporter import (
    RateReporter,
    RateReporterFactory,
    RateReporterStat,
    calc_avg_qps,
    calc_avg_rate,
)


def test_calc_avg_rate_zero_interval():
    assert calc_avg_rate(12345, 0) == 0


def test_calc_avg_rate_one_mebibyte_per_eight_seconds():
    assert calc_avg_rate(1024 * 1024, 8000) == pytest.approx(1.0)


def test_calc_avg_rate_is_linear_in_data():
    assert calc_avg_rate(2000, 500) == pytest.approx(2 * calc_avg_rate(1000, 500))


def test_calc_avg_qps_zero_interval():
    assert calc_avg_qps(100, 0) == 0


def test_calc_avg_qps_per_second_interval_equals_count():
    assert calc_avg_qps(37, 1000) == 37


def test_calc_avg_qps_truncates_to_integer():
    result = calc_avg_qps(1, 3)
    assert isinstance(result, int)
    assert result == 1000 // 3


def test_update_success_and_failure():
    reporter = RateReporter("mod", 1000)
    reporter.update(100, True)
    reporter.update(50, True)
    reporter.update(7, False)
    stat = reporter.stat
    assert stat.total_count == 2
    assert stat.last_count == 2
    assert stat.total_data_size == 150
    assert stat.last_total_data_size == 150
    assert stat.total_failed_count == 1
    assert stat.last_failed_count == 1
    assert stat.total_failed_data_size == 7
    assert stat.last_total_failed_data_size == 7


def test_flush_resets_only_last_counters():
    reporter = RateReporter("mod", 1000)
    reporter.update(100, True)
    reporter.update(3, False)
    reporter.flush()
    stat = reporter.stat
    assert stat == RateReporterStat(
        total_data_size=100, total_failed_data_size=3, total_count=1, total_failed_count=1
    )


def test_stat_is_a_snapshot():
    reporter = RateReporter("mod", 1000)
    snapshot = reporter.stat
    reporter.update(10, True)
    assert snapshot.total_count == 0
    assert reporter.stat.total_count == 1


def test_report_contains_counts():
    reporter = RateReporter("gateway", 1000)
    reporter.update(10, True)
    reporter.update(20, True)
    line = reporter.report()
    assert "[gateway]" in line
    assert "lastCount=2" in line
    assert "lastTotalDataSize=30" in line
    assert "lastQPS(request/s)=2" in line


def test_factory_builds_reporter():
    reporter = RateReporterFactory.build("front", 250)
    assert reporter.module_name == "front"
    assert reporter.interval_ms == 250
    assert reporter.running is False


def test_periodic_flush_keeps_totals():
    reporter = RateReporter("mod", 20)
    with reporter:
        assert reporter.running is True
        reporter.update(5, True)
        deadline = time.monotonic() + 5
        while reporter.stat.last_count != 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        stat = reporter.stat
    assert stat.last_count == 0
    assert stat.total_count == 1
    assert reporter.running is False


def test_stop_without_start_is_harmless():
    reporter = RateReporter("mod", 100)
    reporter.stop()
    reporter.update(1, True)
    assert reporter.stat.total_count == 1