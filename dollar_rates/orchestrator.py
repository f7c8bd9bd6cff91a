"""Concurrent, isolated execution of all source strategies for one cycle.

All strategies start together; the cycle lasts as long as the slowest
source, itself capped by ``source_timeout_ms``. Whatever happens inside one
strategy (a typed acquisition failure, a timeout, an unexpected bug) is
recorded as "no rate for that source this cycle" and never reaches the
siblings or the caller. Only cancellation propagates, so shutdown stays
prompt.
"""

import asyncio
from datetime import UTC, datetime
from typing import Sequence

from pydantic import BaseModel, Field

from config.settings import GlobalConfig, get_config
from dollar_rates.exceptions import AcquisitionError
from dollar_rates.logger import get_logger
from dollar_rates.sources.base import SourceStrategy
from dollar_rates.validator import Rate, SourceHealthMonitor

log = get_logger(__name__)


class CycleResult(BaseModel):
    """Outcome of one fetch cycle.

    Attributes:
        rates: Rates resolved this cycle, in strategy order.
        failures: Failure reason per bankClass.
        started_at: Cycle start (UTC).
        finished_at: Cycle end (UTC).
    """

    rates: list[Rate] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime

    @property
    def attempted(self) -> int:
        return len(self.rates) + len(self.failures)

    @property
    def success_rate(self) -> float:
        if self.attempted == 0:
            return 0.0
        return len(self.rates) / self.attempted

    @property
    def duration_sec(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class FetchOrchestrator:
    """Runs every source strategy concurrently and gathers the successes.

    Example:
        orchestrator = FetchOrchestrator(strategies, config)
        result = await orchestrator.run()
        for rate in result.rates:
            ...
    """

    def __init__(
        self,
        strategies: Sequence[SourceStrategy],
        config: GlobalConfig | None = None,
        monitor: SourceHealthMonitor | None = None,
    ) -> None:
        self.strategies = list(strategies)
        self.config = config or get_config()
        self.monitor = monitor or SourceHealthMonitor(self.config)

    async def run(self) -> CycleResult:
        """Fetch from all sources concurrently.

        Returns:
            The (possibly empty) set of rates resolved this cycle plus the
            failure reason of every other source.
        """
        started_at = datetime.now(UTC)
        outcomes = await asyncio.gather(
            *(self._run_isolated(strategy) for strategy in self.strategies)
        )

        rates: list[Rate] = []
        failures: dict[str, str] = {}
        for strategy, (rate, reason) in zip(self.strategies, outcomes):
            if rate is not None:
                rates.append(rate)
                self.monitor.record_success(strategy.bank_class, at=started_at)
            else:
                failures[strategy.bank_class] = reason or "unknown failure"
                self.monitor.record_failure(strategy.bank_class, failures[strategy.bank_class])

        result = CycleResult(
            rates=rates,
            failures=failures,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )

        if self.strategies and not rates:
            log.warning(
                "No source produced a rate this cycle",
                failures=failures,
                duration_sec=round(result.duration_sec, 2),
            )
        else:
            log.info(
                "Fetch phase complete",
                succeeded=[rate.bank_class for rate in rates],
                failed=sorted(failures),
                success_rate=f"{result.success_rate:.1%}",
                duration_sec=round(result.duration_sec, 2),
            )
        return result

    async def _run_isolated(self, strategy: SourceStrategy) -> tuple[Rate | None, str | None]:
        """Run one strategy, converting every failure into a reason string."""
        timeout_sec = self.config.source_timeout_ms / 1000
        try:
            rate = await asyncio.wait_for(strategy.fetch(), timeout=timeout_sec)
        except AcquisitionError as exc:
            log.error(
                "Source failed",
                bank_class=strategy.bank_class,
                attempts=exc.context.get("attempts"),
            )
            return None, exc.message
        except asyncio.TimeoutError:
            log.error(
                "Source timed out",
                bank_class=strategy.bank_class,
                timeout_sec=timeout_sec,
            )
            return None, f"timed out after {timeout_sec:.0f}s"
        except Exception as exc:
            log.exception(
                "Unexpected error in source strategy",
                bank_class=strategy.bank_class,
                error_type=type(exc).__name__,
            )
            return None, f"{type(exc).__name__}: {exc}"

        return rate, None
