"""Pydantic schemas for the cross-chain gateway API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

GATEWAY_ID_PATTERN = r"^(0x)?([0-9a-fA-F]{32}|[0-9a-fA-F]{64})$"


class RegisterGatewayEscrowRequest(BaseModel):
    escrow_id: str = Field(
        ...,
        pattern=GATEWAY_ID_PATTERN,
        description="16- or 32-byte escrow id in hex; stored left zero-padded to 32 bytes",
    )
    buyer: str = Field(..., min_length=1, max_length=64)
    seller: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., gt=0, description="Amount in the smallest unit")
    origin_chain: str = Field(default="zetachain", max_length=32)


class GatewayCallbackRequest(BaseModel):
    """Inbound oracle-network callback. May be redelivered."""

    escrow_id: str = Field(..., pattern=GATEWAY_ID_PATTERN)
    verified: bool


class GatewayEscrowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    escrow_id: str
    buyer: str
    seller: str
    amount: str
    origin_chain: str
    status: str
    verified: bool | None = None
    outcome: str | None = None
    phase: str | None = None
    created_at: datetime
    updated_at: datetime


class GatewayEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    old_status: str | None = None
    new_status: str
    metadata_json: dict | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime


class GatewayRecordResponse(BaseModel):
    record: GatewayEscrowResponse
    events: list[GatewayEventResponse]


class GatewayTransitionResponse(BaseModel):
    record: GatewayEscrowResponse
    applied: bool = Field(..., description="False when the call was an accepted no-op")
