"""Cross-chain gateway routes.

The oracle network delivers verdicts to POST /api/v1/gateway/callback and
may deliver the same callback more than once; redeliveries answer 200 with
``applied: false``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from aetherlock_oracle.api.deps import get_gateway_service
from aetherlock_oracle.logging_config import get_logger
from aetherlock_oracle.schemas.gateway import (
    GatewayCallbackRequest,
    GatewayEscrowResponse,
    GatewayEventResponse,
    GatewayRecordResponse,
    GatewayTransitionResponse,
    RegisterGatewayEscrowRequest,
)
from aetherlock_oracle.services.gateway_service import GatewayEscrowService, GatewayTransition

router = APIRouter(prefix="/api/v1/gateway", tags=["Gateway"])
logger = get_logger(__name__)


def _transition_response(transition: GatewayTransition) -> GatewayTransitionResponse:
    return GatewayTransitionResponse(
        record=GatewayEscrowResponse.model_validate(transition.record),
        applied=transition.applied,
    )


@router.post(
    "/escrows",
    response_model=GatewayEscrowResponse,
    status_code=201,
    summary="Register a gateway escrow record",
)
async def register_escrow(
    request: RegisterGatewayEscrowRequest,
    service: GatewayEscrowService = Depends(get_gateway_service),
) -> GatewayEscrowResponse:
    record = await service.register(
        request.escrow_id,
        buyer=request.buyer,
        seller=request.seller,
        amount=request.amount,
        origin_chain=request.origin_chain,
    )
    return GatewayEscrowResponse.model_validate(record)


@router.get(
    "/escrows/{escrow_id}",
    response_model=GatewayRecordResponse,
    summary="Gateway record with its audit trail",
)
async def get_record(
    escrow_id: str,
    service: GatewayEscrowService = Depends(get_gateway_service),
) -> GatewayRecordResponse:
    record, events = await service.get_record(escrow_id)
    return GatewayRecordResponse(
        record=GatewayEscrowResponse.model_validate(record),
        events=[GatewayEventResponse.model_validate(event) for event in events],
    )


@router.post(
    "/escrows/{escrow_id}/request",
    response_model=GatewayEscrowResponse,
    summary="Mark that a verdict was requested from the oracle network",
)
async def request_verification(
    escrow_id: str,
    service: GatewayEscrowService = Depends(get_gateway_service),
) -> GatewayEscrowResponse:
    record = await service.request_verification(escrow_id)
    return GatewayEscrowResponse.model_validate(record)


@router.post(
    "/callback",
    response_model=GatewayTransitionResponse,
    summary="Inbound verification callback",
)
async def verification_callback(
    request: GatewayCallbackRequest,
    service: GatewayEscrowService = Depends(get_gateway_service),
) -> GatewayTransitionResponse:
    transition = await service.handle_callback(request.escrow_id, request.verified)
    logger.info(
        "gateway.callback_received",
        escrow_id=transition.record.escrow_id,
        applied=transition.applied,
    )
    return _transition_response(transition)


@router.post(
    "/escrows/{escrow_id}/resolve",
    response_model=GatewayTransitionResponse,
    summary="Resolve a verified record to released or refunded",
)
async def resolve(
    escrow_id: str,
    service: GatewayEscrowService = Depends(get_gateway_service),
) -> GatewayTransitionResponse:
    return _transition_response(await service.resolve(escrow_id))
