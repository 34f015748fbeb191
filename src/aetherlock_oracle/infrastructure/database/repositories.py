"""Repository classes for gateway record access.

Repositories accept an AsyncSession and never manage their own
transactions; the GatewayDatabase session scope commits or rolls back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from aetherlock_oracle.infrastructure.database.orm_models import GatewayEscrow, GatewayEvent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from aetherlock_oracle.domain.enums import GatewayEventType, GatewayStatus


class GatewayRepository:
    """Data access for gateway escrow records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: GatewayEscrow) -> GatewayEscrow:
        self._session.add(record)
        await self._session.flush()
        return record

    async def get(self, escrow_id: str, for_update: bool = False) -> GatewayEscrow | None:
        """Fetch a record; ``for_update`` row-locks it until the transaction ends."""
        stmt = select(GatewayEscrow).where(GatewayEscrow.escrow_id == escrow_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_status(
        self,
        record: GatewayEscrow,
        expected: GatewayStatus,
        new_status: GatewayStatus,
        **values: object,
    ) -> bool:
        """Compare-and-set the status (call AFTER lifecycle validation).

        Returns False, leaving the row untouched, when another writer moved
        the record off ``expected`` first.
        """
        result = await self._session.execute(
            update(GatewayEscrow)
            .where(
                GatewayEscrow.escrow_id == record.escrow_id,
                GatewayEscrow.status == expected.value,
            )
            .values(status=new_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(record)
        return result.rowcount == 1


class GatewayEventRepository:
    """Data access for the append-only gateway event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        escrow_id: str,
        event_type: GatewayEventType,
        old_status: GatewayStatus | None,
        new_status: GatewayStatus,
        metadata: dict | None = None,
    ) -> GatewayEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = GatewayEvent(
            escrow_id=escrow_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def list_for(self, escrow_id: str) -> list[GatewayEvent]:
        result = await self._session.execute(
            select(GatewayEvent)
            .where(GatewayEvent.escrow_id == escrow_id)
            .order_by(GatewayEvent.id.asc())
        )
        return list(result.scalars().all())
