"""Tests for the MCP tool functions, called directly."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from conftest import ESCROW_ID
from aetherlock_oracle.mcp_server import tools
from aetherlock_oracle.orchestration import VerificationOrchestrator
from aetherlock_oracle.services.gateway_service import GatewayEscrowService


@pytest.fixture
def services(monkeypatch, signer, evidence_store, adjudicator, escrow_client, gateway_db):  # noqa: ANN001, ANN201
    state = SimpleNamespace(
        signer=signer,
        escrow_client=escrow_client,
        gateway_service=GatewayEscrowService(gateway_db),
        orchestrator=VerificationOrchestrator(evidence_store, adjudicator, signer, escrow_client),
    )
    monkeypatch.setattr(tools, "_services", None)
    tools.bind_services(state)
    return state


@pytest.mark.asyncio
async def test_unbound_tools_refuse(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(tools, "_services", None)
    with pytest.raises(RuntimeError, match="before the application started"):
        await tools.get_attestation_public_key()


@pytest.mark.asyncio
async def test_public_key(services) -> None:  # noqa: ANN001
    result = await tools.get_attestation_public_key()
    assert result["public_key"] == services.signer.public_key_base58


@pytest.mark.asyncio
async def test_escrow_status(services, funded_escrow) -> None:  # noqa: ANN001
    result = await tools.get_escrow_status("0x" + ESCROW_ID.upper())

    assert result["escrow"]["status"] == "FUNDED"
    assert result["verification"] is None


@pytest.mark.asyncio
async def test_escrow_status_unknown(services) -> None:  # noqa: ANN001
    result = await tools.get_escrow_status(ESCROW_ID)
    assert result["error"] == "ESCROW_NOT_FOUND"


@pytest.mark.asyncio
async def test_gateway_callback_roundtrip(services) -> None:  # noqa: ANN001
    await services.gateway_service.register(ESCROW_ID, buyer="0xb", seller="0xs", amount=5)
    await services.gateway_service.request_verification(ESCROW_ID)

    first = await tools.handle_gateway_callback(ESCROW_ID, False)
    second = await tools.handle_gateway_callback(ESCROW_ID, True)
    record = await tools.get_gateway_record(ESCROW_ID)

    assert first["applied"] is True
    assert second["applied"] is False
    assert record["record"]["verified"] is False
    assert record["record"]["escrow_id"] == ESCROW_ID.rjust(64, "0")
    assert record["events"][-1]["metadata"] == {"verified": False}


@pytest.mark.asyncio
async def test_gateway_callback_unknown(services) -> None:  # noqa: ANN001
    result = await tools.handle_gateway_callback(ESCROW_ID, True)
    assert result["error"] == "UNKNOWN_ESCROW"
