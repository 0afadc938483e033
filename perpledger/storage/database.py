"""
Database store

Relational Store on SQLAlchemy's async engine. The schema enforces:
- fills.signature UNIQUE (at-most-once ingestion)
- fills.position_id REFERENCES positions ON DELETE RESTRICT

Any async SQLAlchemy URL works; SQLite via aiosqlite is the default.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional
from loguru import logger

from sqlalchemy import event, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.models.base import StoreError, StoreIntegrityError
from ..portfolio.aggregator import to_utc
from ..portfolio.models import Fill, Position, PositionStatus
from .base import Store, UpsertResult, fill_changes
from .models import Base, FillModel, PositionModel


MEMORY_URL = "sqlite+aiosqlite:///:memory:"

POSITION_FIELDS = tuple(c.name for c in PositionModel.__table__.columns)
FILL_FIELDS = tuple(c.name for c in FillModel.__table__.columns if c.name != "id")
TIMESTAMP_FIELDS = ("created_at", "updated_at", "closed_at", "timestamp")

# SQLite's bound-parameter limit
IN_CHUNK = 500


def _to_ms(ts: Optional[datetime]) -> Optional[int]:
    if ts is None:
        return None
    return int(to_utc(ts).timestamp() * 1000)


def _from_ms(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _values(model: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    data = model.model_dump(include=set(fields), mode="json")
    for name in TIMESTAMP_FIELDS:
        if name in data:
            data[name] = _to_ms(getattr(model, name))
    return data


def _from_row(row: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    data = {name: getattr(row, name) for name in fields}
    for name in TIMESTAMP_FIELDS:
        if name in data:
            data[name] = _from_ms(data[name])
    return data


def _position_from_row(row: PositionModel) -> Position:
    return Position(**_from_row(row, POSITION_FIELDS))


def _fill_from_row(row: FillModel) -> Fill:
    return Fill(**_from_row(row, FILL_FIELDS))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseStore(Store):
    """
    SQLAlchemy-backed store

    Each operation runs in its own session and commits on success.
    Operations are serialized by an asyncio lock so SQLite never sees
    concurrent writers from this process.
    """

    def __init__(self, url: str = MEMORY_URL, echo: bool = False):
        """
        Initialize store

        Args:
            url: Async SQLAlchemy database URL
            echo: Log emitted SQL
        """
        self.url = make_url(url)
        engine_kwargs: dict[str, Any] = {"echo": echo}

        is_sqlite = self.url.get_backend_name() == "sqlite"
        if is_sqlite and self.url.database in (None, "", ":memory:"):
            # One shared connection keeps the in-memory database alive
            engine_kwargs["poolclass"] = StaticPool
        elif is_sqlite:
            Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_async_engine(self.url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)
        self._lock = asyncio.Lock()
        self._initialized = False

        logger.info(f"Initialized DatabaseStore at {self.url.render_as_string(hide_password=True)}")

    async def initialize(self) -> None:
        """Create tables if they do not exist"""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as e:
                logger.error(f"Failed to create schema: {e}")
                raise StoreError(f"Failed to create schema: {e}") from e
            self._initialized = True
            logger.debug("Database schema ready")

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        await self.initialize()
        async with self._lock:
            async with self._sessions() as session:
                try:
                    yield session
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise StoreIntegrityError(str(e.orig)) from e
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Database error: {e}")
                    raise StoreError(str(e)) from e

    # ===== Positions =====

    async def ensure_position(self, position: Position) -> Position:
        async with self._session() as session:
            row = await session.get(PositionModel, position.id)
            if row is None:
                row = PositionModel(**_values(position, POSITION_FIELDS))
                session.add(row)
                logger.debug(f"Created position {position.id}")
            return _position_from_row(row)

    async def get_position(self, position_id: str) -> Optional[Position]:
        async with self._session() as session:
            row = await session.get(PositionModel, position_id)
            return _position_from_row(row) if row else None

    async def update_position(self, position: Position) -> None:
        async with self._session() as session:
            row = await session.get(PositionModel, position.id)
            if row is None:
                raise StoreIntegrityError(f"Position {position.id} does not exist")
            for name, value in _values(position, POSITION_FIELDS).items():
                setattr(row, name, value)

    async def list_positions(
        self,
        wallet_address: str,
        status: Optional[PositionStatus] = None,
        market: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None
    ) -> list[Position]:
        stmt = select(PositionModel).where(PositionModel.wallet_address == wallet_address)
        if status is not None:
            stmt = stmt.where(PositionModel.status == status.value)
        if market is not None:
            stmt = stmt.where(PositionModel.market == market)
        if created_from is not None:
            stmt = stmt.where(PositionModel.created_at >= _to_ms(created_from))
        if created_to is not None:
            stmt = stmt.where(PositionModel.created_at <= _to_ms(created_to))
        stmt = stmt.order_by(PositionModel.created_at, PositionModel.id)

        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [_position_from_row(r) for r in rows]

    async def list_wallets(self) -> list[str]:
        stmt = (
            select(PositionModel.wallet_address)
            .distinct()
            .order_by(PositionModel.wallet_address)
        )
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    # ===== Fills =====

    async def upsert_fill(self, fill: Fill) -> UpsertResult:
        async with self._session() as session:
            row = await session.scalar(select(FillModel).where(FillModel.signature == fill.signature))

            if row is None:
                session.add(FillModel(**_values(fill, FILL_FIELDS)))
                # Surfaces a missing position as an integrity error here
                await session.flush()
                return UpsertResult.INSERTED

            changes = fill_changes(_fill_from_row(row), fill)
            if not changes:
                return UpsertResult.UNCHANGED

            for name, value in changes.items():
                setattr(row, name, value)
            logger.debug(f"Corrected fill {fill.signature}: {changes}")
            return UpsertResult.UPDATED

    async def get_fills(self, signatures: Iterable[str]) -> dict[str, Fill]:
        wanted = list(signatures)
        result: dict[str, Fill] = {}
        if not wanted:
            return result

        async with self._session() as session:
            for i in range(0, len(wanted), IN_CHUNK):
                stmt = select(FillModel).where(FillModel.signature.in_(wanted[i:i + IN_CHUNK]))
                for row in (await session.scalars(stmt)).all():
                    result[row.signature] = _fill_from_row(row)
        return result

    async def list_fills(self, position_id: str) -> list[Fill]:
        stmt = (
            select(FillModel)
            .where(FillModel.position_id == position_id)
            .order_by(FillModel.timestamp, FillModel.signature)
        )
        async with self._session() as session:
            return [_fill_from_row(r) for r in (await session.scalars(stmt)).all()]

    async def list_wallet_fills(
        self,
        wallet_address: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> list[Fill]:
        stmt = (
            select(FillModel)
            .join(PositionModel, PositionModel.id == FillModel.position_id)
            .where(PositionModel.wallet_address == wallet_address)
        )
        if start is not None:
            stmt = stmt.where(FillModel.timestamp >= _to_ms(start))
        if end is not None:
            stmt = stmt.where(FillModel.timestamp <= _to_ms(end))
        stmt = stmt.order_by(FillModel.timestamp, FillModel.signature)

        async with self._session() as session:
            return [_fill_from_row(r) for r in (await session.scalars(stmt)).all()]

    async def latest_fill_timestamp(self, wallet_address: str) -> Optional[datetime]:
        stmt = (
            select(func.max(FillModel.timestamp))
            .select_from(FillModel)
            .join(PositionModel, PositionModel.id == FillModel.position_id)
            .where(PositionModel.wallet_address == wallet_address)
        )
        async with self._session() as session:
            return _from_ms(await session.scalar(stmt))

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Closed DatabaseStore")
