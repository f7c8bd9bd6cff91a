"""Periodic update loop.

One cycle runs immediately at startup, then the loop waits the full
configured interval after each cycle has finished. Cycles therefore never
overlap and missed ticks are not caught up: a slow cycle simply pushes the
next one back.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from config.settings import GlobalConfig, get_config
from dollar_rates.logger import get_logger
from dollar_rates.orchestrator import CycleResult, FetchOrchestrator
from dollar_rates.store import PersistenceResult, RateStoreWriter

log = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class CycleSummary:
    """What one cycle fetched and wrote."""

    number: int
    fetched: CycleResult
    persisted: PersistenceResult


class RateScheduler:
    """Drives fetch/persist cycles for the lifetime of the process.

    Example:
        scheduler = RateScheduler(orchestrator, writer, config)
        await scheduler.run_forever()
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        writer: RateStoreWriter,
        config: GlobalConfig | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.writer = writer
        self.config = config or get_config()
        self.state = SchedulerState.IDLE
        self.cycles_completed = 0
        self._stop = asyncio.Event()

    async def run_cycle(self) -> CycleSummary:
        """Fetch from every source and persist the successes."""
        number = self.cycles_completed + 1
        self.state = SchedulerState.RUNNING
        log.info("Updating bank rates", cycle=number)
        try:
            fetched = await self.orchestrator.run()
            persisted = await self.writer.persist_all(fetched.rates)
        finally:
            self.state = SchedulerState.IDLE
            self.cycles_completed = number

        log.info(
            "Bank rates update complete",
            cycle=number,
            stored=persisted.written,
            failed_sources=sorted(fetched.failures),
            failed_writes=sorted(persisted.failed),
        )
        return CycleSummary(number=number, fetched=fetched, persisted=persisted)

    async def run_forever(self) -> None:
        """Run cycles until ``stop()`` is called."""
        interval = self.config.update_interval_sec
        log.info("Scheduler started", interval_minutes=self.config.update_interval_minutes)

        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception:
                log.exception("Update cycle crashed", cycle=self.cycles_completed)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        log.info("Scheduler stopped", cycles=self.cycles_completed)

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()
