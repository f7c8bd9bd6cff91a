"""dollar-rates Entry Point.

Bootstrap layer only: all functional code resides in ``dollar_rates``.

Responsibilities:
    1. Load and validate configuration
    2. Initialize logging infrastructure (fail-fast on error)
    3. Prepare the rate store and the source strategies
    4. Run the update scheduler until SIGINT/SIGTERM

Usage:
    python main.py              # run forever: one cycle now, then every interval
    python main.py --once       # run a single cycle and exit
    python main.py --show [BANK_CLASS]   # print stored rates as JSON
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Sequence

from loguru import logger

from config.settings import GlobalConfig, get_config
from config.sources import SourceConfig, load_source_configs
from dollar_rates.exceptions import DollarRatesError, LoggingInitializationError
from dollar_rates.http_client import HttpClient
from dollar_rates.logger import configure_logging
from dollar_rates.orchestrator import FetchOrchestrator
from dollar_rates.scheduler import RateScheduler
from dollar_rates.sources import build_strategies
from dollar_rates.store import RateStore, RateStoreWriter


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect USD exchange rates from Dominican banks.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="run a single update cycle and exit")
    group.add_argument(
        "--show",
        nargs="?",
        const="",
        metavar="BANK_CLASS",
        help="print the stored latest rates (optionally for one bank) and exit",
    )
    return parser.parse_args(argv)


def _validate_startup_requirements(config: GlobalConfig) -> tuple[SourceConfig, ...]:
    """Resolve the enabled sources and check optional fallbacks.

    Raises:
        SystemExit: If the source selection is invalid.
    """
    try:
        sources = load_source_configs(config)
    except ValueError as exc:
        logger.critical("Invalid source selection", error=str(exc))
        sys.exit(1)

    executable = config.browser_executable_path
    if executable is not None and not executable.exists():
        logger.warning(
            "Configured browser executable not found, headless fallback will fail",
            browser_executable_path=str(executable),
        )

    logger.debug(
        "Startup validation complete",
        sources=[source.bank_class for source in sources],
        proxy_configured=config.popular_proxy_url is not None,
        database_url=config.database_url.split("@")[-1],
    )
    return sources


def _install_signal_handlers(scheduler: RateScheduler) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, scheduler.stop)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            logger.debug("Signal handlers unavailable on this platform")
            return


async def _run_service(
    config: GlobalConfig,
    sources: Sequence[SourceConfig],
    store: RateStore,
    *,
    once: bool = False,
) -> int:
    """Wire the components and run one cycle or the scheduler loop.

    Returns:
        Exit code (0 for success).
    """
    async with HttpClient.create(config) as client:
        strategies = build_strategies(sources, client, config)
        orchestrator = FetchOrchestrator(strategies, config)
        scheduler = RateScheduler(orchestrator, RateStoreWriter(store), config)

        if once:
            summary = await scheduler.run_cycle()
            logger.info(
                "Single cycle finished",
                stored=summary.persisted.written,
                failed=sorted(summary.fetched.failures),
            )
            return 0

        _install_signal_handlers(scheduler)
        await scheduler.run_forever()
    return 0


def _show_rates(store: RateStore, bank_class: str) -> int:
    """Print stored rates in the same shape the query API serves them."""
    if bank_class:
        record = store.get_latest(bank_class.strip().lower())
        if record is None:
            payload = {"success": False, "message": f"Bank '{bank_class}' not found"}
            print(json.dumps(payload, indent=2))
            return 1
        payload = {"success": True, "data": record.model_dump(mode="json")}
    else:
        payload = {
            "success": True,
            "data": [record.model_dump(mode="json") for record in store.list_latest()],
        }
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Application entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = _parse_args(argv)

    # Step 1: Load configuration (validates via Pydantic)
    try:
        config = get_config()
    except Exception as exc:
        print(f"FATAL: Configuration loading failed: {exc}", file=sys.stderr)
        return 1

    # Step 2: Initialize logging (fail-fast)
    try:
        configure_logging(config)
    except LoggingInitializationError as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1

    # Step 3: Store and sources
    sources = _validate_startup_requirements(config)
    store = RateStore(config.database_url)
    try:
        store.ensure_schema()
    except Exception as exc:
        logger.critical("Rate store unavailable", error=str(exc))
        return 1

    try:
        if args.show is not None:
            return _show_rates(store, args.show)

        # Step 4: Scheduler
        return asyncio.run(_run_service(config, sources, store, once=args.once))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C)")
        return 130
    except DollarRatesError as exc:
        logger.critical(
            "Fatal application error",
            error_type=type(exc).__name__,
            message=exc.message,
            context=exc.context,
        )
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
