"""SQLAlchemy 2.0 ORM models for gateway-side escrow records.

Two tables:
    1. gateway_escrows  — one row per cross-chain escrow mirrored on the gateway.
    2. gateway_events   — append-only audit log of every gateway transition.

Column types are portable (String, JSON, DateTime) so the same models run on
PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from aetherlock_oracle.domain.state_machine import GatewayLifecycle


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. gateway_escrows
# ---------------------------------------------------------------------------
class GatewayEscrow(Base):
    """A cross-chain escrow record driven by oracle-network callbacks."""

    __tablename__ = "gateway_escrows"

    escrow_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="32-byte escrow identifier, lowercase hex",
    )

    # --- Participants ---
    buyer: Mapped[str] = mapped_column(String(64), nullable=False)
    seller: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[str] = mapped_column(
        String(78),
        nullable=False,
        comment="Amount in the smallest unit, decimal string (fits uint256)",
    )
    origin_chain: Mapped[str] = mapped_column(String(32), nullable=False, default="zetachain")

    # --- Status (guarded by GatewayLifecycle) ---
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="CREATED",
    )
    verified: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
        default=None,
        comment="Verdict delivered by the first accepted callback (null = pending)",
    )
    outcome: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        default=None,
        comment="released | refunded, set on resolution",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    events: Mapped[list[GatewayEvent]] = relationship(
        "GatewayEvent",
        back_populates="escrow",
        cascade="all, delete-orphan",
        order_by="GatewayEvent.id.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('CREATED', 'VERIFICATION_REQUESTED', 'VERIFIED', 'RESOLVED')",
            name="ck_gateway_valid_status",
        ),
        CheckConstraint(
            "outcome IS NULL OR outcome IN ('released', 'refunded')",
            name="ck_gateway_valid_outcome",
        ),
        Index("idx_gateway_status", "status"),
    )

    @property
    def phase(self) -> str | None:
        phase = GatewayLifecycle(self.status).phase
        return phase.value if phase else None

    def __repr__(self) -> str:
        return f"<GatewayEscrow id={self.escrow_id[:12]}... status={self.status}>"


# ---------------------------------------------------------------------------
# 2. gateway_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class GatewayEvent(Base):
    """Immutable audit record of one gateway transition.

    APPEND-ONLY. Duplicate callbacks never produce a row.
    """

    __tablename__ = "gateway_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("gateway_escrows.escrow_id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        default=None,
        comment="Context such as the delivered verdict or resolution outcome",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    escrow: Mapped[GatewayEscrow] = relationship("GatewayEscrow", back_populates="events")

    __table_args__ = (Index("idx_gateway_event_escrow", "escrow_id"),)

    def __repr__(self) -> str:
        return f"<GatewayEvent type={self.event_type} {self.old_status}->{self.new_status}>"
