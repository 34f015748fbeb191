"""MCP tool definitions for the AetherLock oracle.

These tools expose read access to escrows and the attestation key, plus the
gateway callback, via the Model Context Protocol so AI agents can discover
and call them programmatically.

Tools:
    - get_escrow_status: Decoded on-chain escrow account plus any in-flight run
    - get_attestation_public_key: The key attestations are signed with
    - get_gateway_record: Gateway record and its audit trail
    - handle_gateway_callback: Deliver a verification callback

The MCP server is mounted into FastAPI at /mcp via app.mount(). Tools reach
the services built in the application lifespan through ``bind_services``.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from aetherlock_oracle.api.middleware import error_body
from aetherlock_oracle.domain.exceptions import AetherLockError
from aetherlock_oracle.logging_config import get_logger
from aetherlock_oracle.schemas.gateway import (
    GatewayEscrowResponse,
    GatewayEventResponse,
)

logger = get_logger(__name__)

mcp = FastMCP(
    "AetherLock Oracle",
    json_response=True,
)

_services: Any = None


def bind_services(state: Any) -> None:
    """Point the tools at the application's service container (``app.state``)."""
    global _services
    _services = state


def _service(name: str) -> Any:
    if _services is None or getattr(_services, name, None) is None:
        raise RuntimeError(f"MCP tools used before the application started ({name})")
    return getattr(_services, name)


@mcp.tool()
async def get_escrow_status(escrow_id: str) -> dict:
    """Read an escrow's on-chain state and any verification run in flight.

    Args:
        escrow_id: 16-byte escrow id as 32 hex characters.

    Returns:
        The decoded escrow account and, when a run is in flight, its stage.
    """
    escrow_id = escrow_id.removeprefix("0x").lower()
    try:
        account = await _service("escrow_client").get_escrow(escrow_id)
    except AetherLockError as exc:
        logger.warning("mcp.get_escrow_status.error", escrow_id=escrow_id, code=exc.code)
        return error_body(exc)

    run = _service("orchestrator").status(escrow_id)
    return {
        "escrow": account.to_dict(),
        "verification": run.to_dict() if run is not None else None,
    }


@mcp.tool()
async def get_attestation_public_key() -> dict:
    """Return the Ed25519 public key that signs verification attestations.

    Returns:
        public_key (base58), public_key_hex, key_type and usage.
    """
    return _service("signer").key_info()


@mcp.tool()
async def get_gateway_record(escrow_id: str) -> dict:
    """Read a cross-chain gateway record and its event history.

    Args:
        escrow_id: 16- or 32-byte escrow id in hex.
    """
    try:
        record, events = await _service("gateway_service").get_record(escrow_id)
    except AetherLockError as exc:
        logger.warning("mcp.get_gateway_record.error", escrow_id=escrow_id, code=exc.code)
        return error_body(exc)

    return {
        "record": GatewayEscrowResponse.model_validate(record).model_dump(mode="json"),
        "events": [
            GatewayEventResponse.model_validate(event).model_dump(mode="json", by_alias=True)
            for event in events
        ],
    }


@mcp.tool()
async def handle_gateway_callback(escrow_id: str, verified: bool) -> dict:
    """Deliver a verification verdict for a gateway record.

    Redelivery is safe: a record that already holds a verdict is left
    unchanged and ``applied`` is false.

    Args:
        escrow_id: 16- or 32-byte escrow id in hex.
        verified: The oracle network's verdict.
    """
    try:
        transition = await _service("gateway_service").handle_callback(escrow_id, verified)
    except AetherLockError as exc:
        logger.warning("mcp.handle_gateway_callback.error", escrow_id=escrow_id, code=exc.code)
        return error_body(exc)

    return {
        "record": GatewayEscrowResponse.model_validate(transition.record).model_dump(mode="json"),
        "applied": transition.applied,
    }
