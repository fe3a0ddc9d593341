"""
Test: Health monitor
====================
Drives the monitor with a fake clock and memory probe.
"""

from __future__ import annotations

import psutil

from orchestr8_server.health import HealthMonitor, process_memory_mb


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_reports_uptime_and_memory() -> None:
    clock = FakeClock()
    monitor = HealthMonitor(clock=clock, memory_probe=lambda: 12.5)
    clock.now += 1.25

    status = monitor.check()
    assert status.status == "healthy"
    assert status.uptime_ms == 1250
    assert status.memory_mb == 12.5


def test_uptime_never_decreases_when_clock_steps_back() -> None:
    clock = FakeClock()
    monitor = HealthMonitor(clock=clock, memory_probe=lambda: 1.0)
    clock.now += 2.0
    first = monitor.check().uptime_ms
    clock.now -= 1.5
    second = monitor.check().uptime_ms
    assert second >= first


def test_degradation_flag_round_trip() -> None:
    monitor = HealthMonitor(memory_probe=lambda: 1.0)
    monitor.mark_degraded("agent reload failed")
    assert monitor.check().status == "degraded"
    assert monitor.degraded_reason == "agent reload failed"
    monitor.clear_degraded()
    assert monitor.check().status == "healthy"


def test_memory_probe_failure_degrades() -> None:
    def broken_probe() -> float:
        raise psutil.AccessDenied()

    status = HealthMonitor(memory_probe=broken_probe).check()
    assert status.status == "degraded"
    assert status.memory_mb == 0.0


def test_real_memory_probe_is_positive() -> None:
    assert process_memory_mb() > 0
