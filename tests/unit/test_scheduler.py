"""Unit tests for RepeatingTask."""

import asyncio

import pytest

from nutrition_monitor.lib.distributed_tracing import get_correlation_id
from nutrition_monitor.lib.scheduler import RepeatingTask


class TestRepeatingTask:

  @pytest.mark.asyncio
  async def test_runs_immediately_then_repeats(self):
    calls = []
    task = RepeatingTask('tick', lambda: calls.append(1), 0.01, run_immediately=True)

    task.start()
    await asyncio.sleep(0.05)
    await task.stop()

    assert len(calls) >= 2
    assert task.tick_count == len(calls)
    assert not task.is_running

  @pytest.mark.asyncio
  async def test_failing_tick_does_not_stop_the_loop(self):
    attempts = []

    async def flaky():
      attempts.append(1)
      raise RuntimeError('tick failed')

    task = RepeatingTask('flaky', flaky, 0.01, run_immediately=True)
    task.start()
    await asyncio.sleep(0.05)
    await task.stop()

    assert len(attempts) >= 2

  @pytest.mark.asyncio
  async def test_stop_waits_for_in_flight_tick(self):
    finished = []

    async def slow_tick():
      await asyncio.sleep(0.05)
      finished.append(True)

    task = RepeatingTask('slow', slow_tick, 10, run_immediately=True)
    task.start()
    await asyncio.sleep(0.01)
    await task.stop()

    assert finished == [True]

  @pytest.mark.asyncio
  async def test_adaptive_interval_is_reevaluated(self):
    intervals = iter([0.01, 0.01, 60])
    calls = []
    task = RepeatingTask('adaptive', lambda: calls.append(1), lambda: next(intervals))

    task.start()
    await asyncio.sleep(0.08)
    await task.stop()

    assert len(calls) == 2

  @pytest.mark.asyncio
  async def test_tick_gets_its_own_correlation_id(self):
    seen = []
    task = RepeatingTask('health-check', lambda: seen.append(get_correlation_id()), 60)

    await task.run_once()

    assert seen[0].startswith('health-check-')

  @pytest.mark.asyncio
  async def test_stop_before_start_is_a_noop(self):
    task = RepeatingTask('idle', lambda: None, 1)

    await task.stop()

    assert task.tick_count == 0
