"""Tests for the gateway record state machine over a real SQLite database."""

from __future__ import annotations

import asyncio

import pytest

from aetherlock_oracle.domain.enums import GatewayEventType, GatewayStatus
from aetherlock_oracle.domain.exceptions import InvalidStateTransitionError, UnknownEscrowError
from aetherlock_oracle.infrastructure.database.engine import GatewayDatabase
from aetherlock_oracle.services.gateway_service import GatewayEscrowService

SHORT_ID = "9f1c2a7e4b3d4c5e8f901a2b3c4d5e6f"
FULL_ID = "00" * 16 + SHORT_ID


async def _requested(service: GatewayEscrowService) -> None:
    await service.register(SHORT_ID, buyer="0xbuyer", seller="0xseller", amount=10**18)
    await service.request_verification(SHORT_ID)


class TestGatewayEscrowService:
    @pytest.mark.asyncio
    async def test_register(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        record = await service.register(SHORT_ID, buyer="0xbuyer", seller="0xseller", amount=10**18)

        assert record.escrow_id == FULL_ID
        assert record.status == GatewayStatus.CREATED
        assert record.amount == str(10**18)

    @pytest.mark.asyncio
    async def test_register_twice(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await service.register(SHORT_ID, buyer="a", seller="b", amount=1)
        with pytest.raises(InvalidStateTransitionError, match="already exists"):
            await service.register(FULL_ID, buyer="a", seller="b", amount=1)

    @pytest.mark.asyncio
    async def test_full_lifecycle_and_audit_trail(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)

        transition = await service.handle_callback(SHORT_ID, True)
        assert transition.applied
        assert transition.record.status == GatewayStatus.VERIFIED

        resolved = await service.resolve(SHORT_ID)
        assert resolved.record.status == GatewayStatus.RESOLVED
        assert resolved.record.outcome == "released"

        _, events = await service.get_record(SHORT_ID)
        assert [e.event_type for e in events] == [
            GatewayEventType.RECORD_CREATED,
            GatewayEventType.VERIFICATION_REQUESTED,
            GatewayEventType.VERIFICATION_RECEIVED,
            GatewayEventType.RECORD_RESOLVED,
        ]
        assert events[2].metadata_json == {"verified": True}

    @pytest.mark.asyncio
    async def test_negative_verdict_refunds(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        await service.handle_callback(SHORT_ID, False)

        resolved = await service.resolve(SHORT_ID)

        assert resolved.record.outcome == "refunded"

    @pytest.mark.asyncio
    async def test_duplicate_callback_is_noop(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        await service.handle_callback(SHORT_ID, True)

        again = await service.handle_callback(SHORT_ID, True)

        assert not again.applied
        assert again.record.status == GatewayStatus.VERIFIED
        _, events = await service.get_record(SHORT_ID)
        assert len(events) == 3

    @pytest.mark.asyncio
    async def test_conflicting_callback_keeps_first_verdict(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        await service.handle_callback(SHORT_ID, True)

        again = await service.handle_callback(SHORT_ID, False)

        assert not again.applied
        assert again.record.verified is True

    @pytest.mark.asyncio
    async def test_callback_after_resolution_is_noop(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        await service.handle_callback(SHORT_ID, True)
        await service.resolve(SHORT_ID)

        again = await service.handle_callback(SHORT_ID, True)

        assert not again.applied
        assert again.record.status == GatewayStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_callbacks_apply_once(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)

        results = await asyncio.gather(
            *(service.handle_callback(SHORT_ID, True) for _ in range(3)),
            return_exceptions=True,
        )

        applied = [r for r in results if not isinstance(r, BaseException) and r.applied]
        assert len(applied) == 1
        _, events = await service.get_record(SHORT_ID)
        assert sum(e.event_type == GatewayEventType.VERIFICATION_RECEIVED for e in events) == 1

    @pytest.mark.asyncio
    async def test_callback_before_request(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await service.register(SHORT_ID, buyer="a", seller="b", amount=1)
        with pytest.raises(InvalidStateTransitionError):
            await service.handle_callback(SHORT_ID, True)

    @pytest.mark.asyncio
    async def test_unknown_escrow(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        with pytest.raises(UnknownEscrowError):
            await service.handle_callback(SHORT_ID, True)
        with pytest.raises(UnknownEscrowError):
            await service.get_record(SHORT_ID)

    @pytest.mark.asyncio
    async def test_resolve_requires_verdict(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        with pytest.raises(InvalidStateTransitionError):
            await service.resolve(SHORT_ID)

    @pytest.mark.asyncio
    async def test_resolve_twice_is_noop(self, gateway_db: GatewayDatabase) -> None:
        service = GatewayEscrowService(gateway_db)
        await _requested(service)
        await service.handle_callback(SHORT_ID, True)
        await service.resolve(SHORT_ID)

        again = await service.resolve(SHORT_ID)

        assert not again.applied
