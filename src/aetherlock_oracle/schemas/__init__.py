"""Pydantic API schemas."""

from aetherlock_oracle.schemas.escrow import (
    CreateEscrowRequest,
    EscrowAccountResponse,
    EvidenceHashRequest,
    EvidenceHashResponse,
    HealthResponse,
    PipelineRunResponse,
    PublicKeyResponse,
    RaiseDisputeRequest,
    TransactionResponse,
    VerificationResponse,
    VerifyAttestationRequest,
    VerifyAttestationResponse,
)
from aetherlock_oracle.schemas.gateway import (
    GatewayCallbackRequest,
    GatewayEscrowResponse,
    GatewayEventResponse,
    GatewayRecordResponse,
    GatewayTransitionResponse,
    RegisterGatewayEscrowRequest,
)

__all__ = [
    "CreateEscrowRequest",
    "EscrowAccountResponse",
    "EvidenceHashRequest",
    "EvidenceHashResponse",
    "GatewayCallbackRequest",
    "GatewayEscrowResponse",
    "GatewayEventResponse",
    "GatewayRecordResponse",
    "GatewayTransitionResponse",
    "HealthResponse",
    "PipelineRunResponse",
    "PublicKeyResponse",
    "RaiseDisputeRequest",
    "RegisterGatewayEscrowRequest",
    "TransactionResponse",
    "VerificationResponse",
    "VerifyAttestationRequest",
    "VerifyAttestationResponse",
]
