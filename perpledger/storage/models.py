"""
SQLAlchemy models for the database store

Timestamps are stored as UTC epoch milliseconds so ordering and range
filters behave the same on every backend.
"""
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for store models"""

    pass


class PositionModel(Base):
    """Aggregated position, one row per deterministic position id"""

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    market: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False, default="OPEN")

    avg_entry_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_exit_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_size: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_fees: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    realized_pnl: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    price_pnl: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    funding: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    soc_loss: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    closed_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_positions_wallet_created", "wallet_address", "created_at"),
        Index("idx_positions_wallet_status", "wallet_address", "status"),
    )


class FillModel(Base):
    """One executed fill; at most one row per fill key"""

    __tablename__ = "fills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    signature: Mapped[str] = mapped_column(String(128), nullable=False)
    position_id: Mapped[str] = mapped_column(
        String(160),
        ForeignKey("positions.id", ondelete="RESTRICT", onupdate="CASCADE"),
        nullable=False,
    )

    price: Mapped[float] = mapped_column(Float, nullable=False)
    size: Mapped[float] = mapped_column(Float, nullable=False)
    fee: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    funding: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    soc_loss: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_entry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    trade_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("signature", name="uq_fills_signature"),
        Index("idx_fills_position", "position_id"),
        Index("idx_fills_timestamp", "timestamp"),
    )
