"""FastAPI dependency injection providers.

Every long-lived collaborator is built once in the application lifespan and
stored on ``app.state``; these providers hand them to route handlers via
Depends(). Tests populate ``app.state`` directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from aetherlock_oracle.orchestration.pipeline import VerificationOrchestrator
    from aetherlock_oracle.services.attestation_signer import AttestationSigner
    from aetherlock_oracle.services.escrow_client import EscrowClient
    from aetherlock_oracle.services.gateway_service import GatewayEscrowService


def get_escrow_client(request: Request) -> EscrowClient:
    return request.app.state.escrow_client


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    return request.app.state.orchestrator


def get_signer(request: Request) -> AttestationSigner:
    return request.app.state.signer


def get_gateway_service(request: Request) -> GatewayEscrowService:
    return request.app.state.gateway_service
