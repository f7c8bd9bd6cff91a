"""Tests for the periodic update loop.

Validates RateScheduler including:
- Single cycle wiring (fetch then persist)
- Loop survival across crashing cycles
- No overlapping cycles
- Prompt stop
"""

import asyncio
from datetime import UTC, datetime
from typing import Callable
from unittest.mock import PropertyMock

import pytest
from pytest_mock import MockerFixture

from config.settings import GlobalConfig
from dollar_rates.orchestrator import CycleResult
from dollar_rates.scheduler import RateScheduler, SchedulerState
from dollar_rates.store import PersistenceResult
from dollar_rates.validator import Rate


class FakeOrchestrator:
    """Returns scripted results and records cycle overlap."""

    def __init__(self, rates: list[Rate], on_run: Callable[[int], None] | None = None) -> None:
        self.rates = rates
        self.on_run = on_run
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def run(self) -> CycleResult:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_run is not None:
                self.on_run(self.calls)
            await asyncio.sleep(0.01)
            now = datetime.now(UTC)
            return CycleResult(rates=self.rates, failures={}, started_at=now, finished_at=now)
        finally:
            self.active -= 1


class FakeWriter:
    def __init__(self) -> None:
        self.batches: list[list[Rate]] = []

    async def persist_all(self, rates: list[Rate]) -> PersistenceResult:
        self.batches.append(list(rates))
        return PersistenceResult(written=[rate.bank_class for rate in rates])


@pytest.fixture
def short_interval(mocker: MockerFixture) -> None:
    """Shrink the cycle interval to 10ms."""
    mocker.patch.object(
        GlobalConfig,
        "update_interval_sec",
        new_callable=PropertyMock,
        return_value=0.01,
    )


class TestRunCycle:
    """One fetch/persist cycle."""

    @pytest.mark.asyncio
    async def test_fetched_rates_are_persisted(
        self, mock_config: GlobalConfig, rate_factory: Callable[..., Rate]
    ) -> None:
        rates = [rate_factory("banreservas"), rate_factory("bhd")]
        writer = FakeWriter()
        scheduler = RateScheduler(FakeOrchestrator(rates), writer, mock_config)

        summary = await scheduler.run_cycle()

        assert summary.number == 1
        assert writer.batches == [rates]
        assert summary.persisted.written == ["banreservas", "bhd"]
        assert scheduler.state is SchedulerState.IDLE
        assert scheduler.cycles_completed == 1

    @pytest.mark.asyncio
    async def test_empty_cycle_writes_nothing(self, mock_config: GlobalConfig) -> None:
        writer = FakeWriter()
        scheduler = RateScheduler(FakeOrchestrator([]), writer, mock_config)

        summary = await scheduler.run_cycle()

        assert summary.persisted.written == []
        assert writer.batches == [[]]


class TestRunForever:
    """Loop behavior."""

    @pytest.mark.asyncio
    async def test_runs_immediately_then_every_interval(
        self,
        mock_config: GlobalConfig,
        rate_factory: Callable[..., Rate],
        short_interval: None,
    ) -> None:
        scheduler: RateScheduler

        def stop_after_third(call: int) -> None:
            if call == 3:
                scheduler.stop()

        orchestrator = FakeOrchestrator([rate_factory("bhd")], on_run=stop_after_third)
        scheduler = RateScheduler(orchestrator, FakeWriter(), mock_config)

        await asyncio.wait_for(scheduler.run_forever(), timeout=5)

        assert scheduler.cycles_completed == 3
        assert orchestrator.max_active == 1

    @pytest.mark.asyncio
    async def test_crashing_cycle_does_not_stop_loop(
        self,
        mock_config: GlobalConfig,
        rate_factory: Callable[..., Rate],
        short_interval: None,
    ) -> None:
        scheduler: RateScheduler

        def crash_first(call: int) -> None:
            if call == 1:
                raise RuntimeError("database driver exploded")
            scheduler.stop()

        writer = FakeWriter()
        orchestrator = FakeOrchestrator([rate_factory("bhd")], on_run=crash_first)
        scheduler = RateScheduler(orchestrator, writer, mock_config)

        await asyncio.wait_for(scheduler.run_forever(), timeout=5)

        assert orchestrator.calls == 2
        assert len(writer.batches) == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(
        self, mock_config: GlobalConfig, rate_factory: Callable[..., Rate]
    ) -> None:
        """With a thirty-minute interval, stop() still ends the loop promptly."""
        scheduler = RateScheduler(FakeOrchestrator([rate_factory("bhd")]), FakeWriter(), mock_config)

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.1)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=2)

        assert scheduler.stopping
        assert scheduler.cycles_completed == 1
