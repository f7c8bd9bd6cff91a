"""Rate persistence: latest value per bank plus an append-only change log.

``RateStore`` is the synchronous SQLAlchemy layer. The latest-value table
has exactly one row per ``bank_class``; writes go through a single
``INSERT ... ON CONFLICT (bank_class) DO UPDATE`` statement, so the
database's unique key provides the mutual exclusion.

``RateStoreWriter`` is what a cycle talks to. It runs store calls in a
worker thread, serializes writes per bankClass, treats the history append as
best effort and keeps going when a single rate cannot be written.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import DateTime, Integer, Numeric, String, create_engine, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from dollar_rates.exceptions import PersistenceError
from dollar_rates.logger import get_logger
from dollar_rates.validator import Rate, RateHistoryEntry, StoredRateRecord

log = get_logger(__name__)

RATE_PRECISION = Numeric(12, 4, asdecimal=True)


class Base(DeclarativeBase):
    pass


class BankRate(Base):
    """Latest known rate of a bank (one row per bank_class)."""

    __tablename__ = "bank_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank_class: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    buy_rate: Mapped[Decimal] = mapped_column("dollar_buy_rate", RATE_PRECISION, nullable=False)
    sell_rate: Mapped[Decimal] = mapped_column("dollar_sell_rate", RATE_PRECISION, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BankRateLog(Base):
    """Append-only record of every successfully stored rate."""

    __tablename__ = "bank_rates_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank_class: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    buy_rate: Mapped[Decimal] = mapped_column("dollar_buy_rate", RATE_PRECISION, nullable=False)
    sell_rate: Mapped[Decimal] = mapped_column("dollar_sell_rate", RATE_PRECISION, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(
        "created_at", DateTime(timezone=True), nullable=False
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RateStore:
    """SQLAlchemy-backed rate store (PostgreSQL or SQLite).

    Args:
        url: SQLAlchemy database URL.
        clock: Source of "now" timestamps.
    """

    def __init__(self, url: str, clock: Callable[[], datetime] = _utcnow) -> None:
        self.url = url
        self.clock = clock
        self._engine_instance: Engine | None = None

    def _get_engine(self) -> Engine:
        if self._engine_instance is None:
            connect_args = {}
            if self.url.startswith("sqlite"):
                connect_args = {"check_same_thread": False, "timeout": 30}
            self._engine_instance = create_engine(
                self.url,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
        return self._engine_instance

    def ensure_schema(self) -> None:
        """Create the tables when missing."""
        engine = self._get_engine()
        log.info("Ensuring bank_rates schema exists", dialect=engine.dialect.name)
        Base.metadata.create_all(engine)

    def _insert(self):
        table = BankRate.__table__
        dialect = self._get_engine().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise PersistenceError("upsert", "*", f"unsupported dialect '{dialect}'")

    def upsert(self, rate: Rate) -> StoredRateRecord:
        """Insert or replace the latest rate for ``rate.bank_class``.

        Existing rows keep ``created_at`` and get new values plus a fresh
        ``updated_at``; new rows get both timestamps set to now.

        Raises:
            PersistenceError: If the statement fails.
        """
        now = self.clock()
        stmt = self._insert().values(
            bank_name=rate.bank_name,
            bank_class=rate.bank_class,
            dollar_buy_rate=rate.buy_rate,
            dollar_sell_rate=rate.sell_rate,
            updated_at=now,
            created_at=now,
        )
        # Core statements address columns by their table names, not the ORM attributes.
        stmt = stmt.on_conflict_do_update(
            index_elements=[stmt.table.c.bank_class],
            set_={
                "bank_name": stmt.excluded.bank_name,
                "dollar_buy_rate": stmt.excluded.dollar_buy_rate,
                "dollar_sell_rate": stmt.excluded.dollar_sell_rate,
                "updated_at": stmt.excluded.updated_at,
            },
        )

        try:
            with Session(self._get_engine()) as session, session.begin():
                session.execute(stmt)
                row = session.scalars(
                    select(BankRate).where(BankRate.bank_class == rate.bank_class)
                ).one()
                return StoredRateRecord.model_validate(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("upsert", rate.bank_class, str(exc)) from exc

    def append_history(self, rate: Rate, observed_at: datetime | None = None) -> None:
        """Append ``rate`` to the change log in its own transaction.

        Raises:
            PersistenceError: If the insert fails.
        """
        entry = BankRateLog(
            bank_name=rate.bank_name,
            bank_class=rate.bank_class,
            buy_rate=rate.buy_rate,
            sell_rate=rate.sell_rate,
            observed_at=observed_at or self.clock(),
        )
        try:
            with Session(self._get_engine()) as session, session.begin():
                session.add(entry)
        except SQLAlchemyError as exc:
            raise PersistenceError("history append", rate.bank_class, str(exc)) from exc

    def list_latest(self) -> list[StoredRateRecord]:
        """Latest rate of every bank, ordered by bank_class."""
        try:
            with Session(self._get_engine()) as session:
                rows = session.scalars(select(BankRate).order_by(BankRate.bank_class)).all()
                return [StoredRateRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError("read", "*", str(exc)) from exc

    def get_latest(self, bank_class: str) -> StoredRateRecord | None:
        """Latest rate of one bank, or None if it never succeeded."""
        try:
            with Session(self._get_engine()) as session:
                row = session.scalars(
                    select(BankRate).where(BankRate.bank_class == bank_class)
                ).one_or_none()
                return StoredRateRecord.model_validate(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError("read", bank_class, str(exc)) from exc

    def history(self, bank_class: str, limit: int = 100) -> list[RateHistoryEntry]:
        """Most recent change-log entries of one bank, newest first."""
        try:
            with Session(self._get_engine()) as session:
                rows = session.scalars(
                    select(BankRateLog)
                    .where(BankRateLog.bank_class == bank_class)
                    .order_by(BankRateLog.observed_at.desc(), BankRateLog.id.desc())
                    .limit(limit)
                ).all()
                return [RateHistoryEntry.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError("read", bank_class, str(exc)) from exc

    def close(self) -> None:
        if self._engine_instance is not None:
            self._engine_instance.dispose()
            self._engine_instance = None


@dataclass
class PersistenceResult:
    """Counts of a persist_all run."""

    written: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    history_failed: list[str] = field(default_factory=list)


class RateStoreWriter:
    """Async writer applying one cycle's rates to the store.

    Writes to the same bankClass are serialized with a per-key lock, so
    concurrent cycles can never interleave on one record.
    """

    def __init__(self, store: RateStore) -> None:
        self.store = store
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def upsert(self, rate: Rate) -> tuple[StoredRateRecord, bool]:
        """Upsert ``rate`` then append it to the history.

        Returns:
            The stored record and whether the history append succeeded.

        Raises:
            PersistenceError: If the upsert itself failed.
        """
        async with self._locks[rate.bank_class]:
            record = await asyncio.to_thread(self.store.upsert, rate)
            log.info(
                "Rate stored",
                bank_class=rate.bank_class,
                buy=f"{rate.buy_rate:.2f}",
                sell=f"{rate.sell_rate:.2f}",
            )

            try:
                await asyncio.to_thread(self.store.append_history, rate, record.updated_at)
            except PersistenceError as exc:
                log.warning(
                    "History append failed, latest value kept",
                    bank_class=rate.bank_class,
                    error=exc.message,
                )
                return record, False
            return record, True

    async def persist_all(self, rates: Iterable[Rate]) -> PersistenceResult:
        """Write every rate, continuing past individual failures."""
        result = PersistenceResult()
        for rate in rates:
            try:
                _, history_ok = await self.upsert(rate)
            except PersistenceError as exc:
                log.error("Failed to store rate", bank_class=rate.bank_class, error=exc.message)
                result.failed[rate.bank_class] = exc.message
                continue
            except Exception as exc:
                log.exception(
                    "Unexpected error while storing rate",
                    bank_class=rate.bank_class,
                    error_type=type(exc).__name__,
                )
                result.failed[rate.bank_class] = f"{type(exc).__name__}: {exc}"
                continue
            result.written.append(rate.bank_class)
            if not history_ok:
                result.history_failed.append(rate.bank_class)
        return result
