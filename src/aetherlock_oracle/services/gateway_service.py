"""Gateway Escrow Service — the cross-chain record state machine.

Drives gateway-side escrow records through
    CREATED -> VERIFICATION_REQUESTED -> VERIFIED -> RESOLVED
from inbound oracle-network callbacks. The oracle network may redeliver, so
a callback for a record already VERIFIED or RESOLVED is accepted as a no-op:
no status change, no audit event. The first delivered verdict wins.

Each call runs in its own transaction with the record row-locked and the
status written compare-and-set, so of two concurrent deliveries of the same
callback exactly one applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from aetherlock_oracle.domain.enums import GatewayEventType, GatewayOutcome, GatewayStatus
from aetherlock_oracle.domain.exceptions import (
    InvalidStateTransitionError,
    UnknownEscrowError,
)
from aetherlock_oracle.domain.models import to_gateway_id
from aetherlock_oracle.domain.state_machine import GatewayLifecycle
from aetherlock_oracle.infrastructure.database.orm_models import GatewayEscrow, GatewayEvent
from aetherlock_oracle.infrastructure.database.repositories import (
    GatewayEventRepository,
    GatewayRepository,
)
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from aetherlock_oracle.infrastructure.database.engine import GatewayDatabase

logger = get_logger(__name__)

_SETTLED = frozenset({GatewayStatus.VERIFIED, GatewayStatus.RESOLVED})


@dataclass(frozen=True)
class GatewayTransition:
    """Result of a gateway operation. ``applied`` is False for an accepted no-op."""

    record: GatewayEscrow
    applied: bool


class GatewayEscrowService:
    """Manages gateway escrow records."""

    def __init__(self, database: GatewayDatabase) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        escrow_id: str,
        buyer: str,
        seller: str,
        amount: int,
        origin_chain: str = "zetachain",
    ) -> GatewayEscrow:
        """Create a record in CREATED state."""
        gateway_id = to_gateway_id(escrow_id)
        async with self._db.session() as session:
            repo = GatewayRepository(session)
            existing = await repo.get(gateway_id)
            if existing is not None:
                raise InvalidStateTransitionError(
                    existing.status, GatewayStatus.CREATED, "record already exists"
                )

            record = await repo.create(
                GatewayEscrow(
                    escrow_id=gateway_id,
                    buyer=buyer,
                    seller=seller,
                    amount=str(amount),
                    origin_chain=origin_chain,
                    status=GatewayStatus.CREATED.value,
                )
            )
            await GatewayEventRepository(session).record(
                escrow_id=gateway_id,
                event_type=GatewayEventType.RECORD_CREATED,
                old_status=None,
                new_status=GatewayStatus.CREATED,
                metadata={"origin_chain": origin_chain, "amount": str(amount)},
            )

        logger.info("gateway.registered", escrow_id=gateway_id, origin_chain=origin_chain)
        return record

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def request_verification(self, escrow_id: str) -> GatewayEscrow:
        """Mark that a verdict has been requested from the oracle network."""
        gateway_id = to_gateway_id(escrow_id)
        async with self._db.session() as session:
            record = await self._get_locked(session, gateway_id)
            old_status = GatewayStatus(record.status)
            new_status = self._fire_transition(record, "request_verification")

            if not await GatewayRepository(session).update_status(record, old_status, new_status):
                raise InvalidStateTransitionError(
                    record.status, new_status, "record changed concurrently"
                )
            await GatewayEventRepository(session).record(
                escrow_id=gateway_id,
                event_type=GatewayEventType.VERIFICATION_REQUESTED,
                old_status=old_status,
                new_status=new_status,
            )

        logger.info("gateway.verification_requested", escrow_id=gateway_id)
        return record

    async def handle_callback(self, escrow_id: str, verified: bool) -> GatewayTransition:
        """Apply an inbound verification callback.

        Raises:
            UnknownEscrowError: No record for the id.
            InvalidStateTransitionError: Record is still CREATED.
        """
        gateway_id = to_gateway_id(escrow_id)
        async with self._db.session() as session:
            record = await self._get_locked(session, gateway_id)
            old_status = GatewayStatus(record.status)

            if old_status in _SETTLED:
                if record.verified is not None and record.verified != verified:
                    logger.warning(
                        "gateway.callback_conflict",
                        escrow_id=gateway_id,
                        stored=record.verified,
                        delivered=verified,
                    )
                else:
                    logger.info(
                        "gateway.callback_duplicate", escrow_id=gateway_id, status=old_status
                    )
                return GatewayTransition(record=record, applied=False)

            new_status = self._fire_transition(record, "verification_received")
            applied = await GatewayRepository(session).update_status(
                record, old_status, new_status, verified=verified
            )
            if not applied:
                logger.info("gateway.callback_duplicate", escrow_id=gateway_id, status=record.status)
                return GatewayTransition(record=record, applied=False)
            await GatewayEventRepository(session).record(
                escrow_id=gateway_id,
                event_type=GatewayEventType.VERIFICATION_RECEIVED,
                old_status=old_status,
                new_status=new_status,
                metadata={"verified": verified},
            )

        logger.info("gateway.callback_applied", escrow_id=gateway_id, verified=verified)
        return GatewayTransition(record=record, applied=True)

    async def resolve(self, escrow_id: str) -> GatewayTransition:
        """Settle a VERIFIED record: released when verified, refunded otherwise."""
        gateway_id = to_gateway_id(escrow_id)
        async with self._db.session() as session:
            record = await self._get_locked(session, gateway_id)
            old_status = GatewayStatus(record.status)
            if old_status == GatewayStatus.RESOLVED:
                return GatewayTransition(record=record, applied=False)

            new_status = self._fire_transition(record, "resolve")
            outcome = GatewayOutcome.RELEASED if record.verified else GatewayOutcome.REFUNDED
            applied = await GatewayRepository(session).update_status(
                record, old_status, new_status, outcome=outcome.value
            )
            if not applied:
                return GatewayTransition(record=record, applied=False)
            await GatewayEventRepository(session).record(
                escrow_id=gateway_id,
                event_type=GatewayEventType.RECORD_RESOLVED,
                old_status=old_status,
                new_status=new_status,
                metadata={"outcome": outcome.value},
            )

        logger.info("gateway.resolved", escrow_id=gateway_id, outcome=outcome.value)
        return GatewayTransition(record=record, applied=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_record(self, escrow_id: str) -> tuple[GatewayEscrow, list[GatewayEvent]]:
        gateway_id = to_gateway_id(escrow_id)
        async with self._db.session() as session:
            record = await GatewayRepository(session).get(gateway_id)
            if record is None:
                raise UnknownEscrowError(gateway_id)
            events = await GatewayEventRepository(session).list_for(gateway_id)
        return record, events

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _get_locked(session, gateway_id: str) -> GatewayEscrow:  # noqa: ANN001
        record = await GatewayRepository(session).get(gateway_id, for_update=True)
        if record is None:
            raise UnknownEscrowError(gateway_id)
        return record

    @staticmethod
    def _fire_transition(record: GatewayEscrow, event_name: str) -> GatewayStatus:
        """Validate via the lifecycle guard; raises InvalidStateTransitionError."""
        return GatewayStatus(GatewayLifecycle.validate_transition(record.status, event_name))
