"""Escrow REST API routes.

These endpoints drive the on-chain escrow lifecycle and the verification
pipeline. The MCP tools in mcp_server/tools.py call the same services.

Routes:
    POST   /api/v1/escrow                    — createEscrow
    GET    /api/v1/escrow/{id}               — Read the on-chain account
    POST   /api/v1/escrow/{id}/deposit       — depositFunds
    POST   /api/v1/escrow/{id}/verify        — Run the verification pipeline
    GET    /api/v1/escrow/{id}/verification  — In-flight run status
    DELETE /api/v1/escrow/{id}/verification  — Cancel a run before submission
    POST   /api/v1/escrow/{id}/release       — releaseFunds
    POST   /api/v1/escrow/{id}/dispute       — raiseDispute
"""

from __future__ import annotations

import hashlib

from fastapi import APIRouter, Depends, File, Form, UploadFile

from aetherlock_oracle.api.deps import get_escrow_client, get_orchestrator, get_signer
from aetherlock_oracle.domain.models import EscrowParams, EvidenceFile
from aetherlock_oracle.logging_config import get_logger
from aetherlock_oracle.orchestration.pipeline import VerificationOrchestrator
from aetherlock_oracle.schemas.escrow import (
    CreateEscrowRequest,
    EscrowAccountResponse,
    PipelineRunResponse,
    RaiseDisputeRequest,
    TransactionResponse,
    VerificationResponse,
)
from aetherlock_oracle.services.attestation_signer import AttestationSigner
from aetherlock_oracle.services.escrow_client import EscrowClient

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


def _normalize(escrow_id: str) -> str:
    return escrow_id.removeprefix("0x").lower()


# ---------------------------------------------------------------------------
# Create / Read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Create a new escrow account",
)
async def create_escrow(
    request: CreateEscrowRequest,
    client: EscrowClient = Depends(get_escrow_client),
    signer: AttestationSigner = Depends(get_signer),
) -> TransactionResponse:
    params = EscrowParams(
        escrow_id=_normalize(request.escrow_id),
        buyer=request.buyer,
        seller=request.seller,
        token_mint=request.token_mint,
        amount=request.amount,
        expiry=request.expiry,
        task_description=request.task_description,
        ai_agent_pubkey=request.ai_agent_pubkey or signer.public_key_base58,
    )
    result = await client.create_escrow(params)
    return TransactionResponse(**result.to_dict())


@router.get(
    "/{escrow_id}",
    response_model=EscrowAccountResponse,
    summary="Read the on-chain escrow account",
)
async def get_escrow(
    escrow_id: str,
    client: EscrowClient = Depends(get_escrow_client),
) -> EscrowAccountResponse:
    account = await client.get_escrow(_normalize(escrow_id))
    return EscrowAccountResponse(**account.to_dict())


# ---------------------------------------------------------------------------
# Deposit
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/deposit",
    response_model=TransactionResponse,
    summary="Deposit the committed amount into the vault",
)
async def deposit_funds(
    escrow_id: str,
    client: EscrowClient = Depends(get_escrow_client),
) -> TransactionResponse:
    result = await client.deposit_funds(_normalize(escrow_id))
    return TransactionResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# Verification pipeline
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/verify",
    response_model=VerificationResponse,
    summary="Upload evidence and run the verification pipeline",
    description=(
        "Uploads the evidence bundle, adjudicates it, signs the verdict and "
        "submits the attestation on chain. Fails with the stage and cause."
    ),
)
async def verify_escrow(
    escrow_id: str,
    task_description: str = Form(..., min_length=1, max_length=5000),
    files: list[UploadFile] = File(..., description="Evidence files"),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationResponse:
    evidence = [
        EvidenceFile(
            name=upload.filename or "",
            mime_type=upload.content_type or "application/octet-stream",
            content=await upload.read(),
            declared_size=upload.size,
        )
        for upload in files
    ]
    record = await orchestrator.run(_normalize(escrow_id), task_description, evidence)
    return VerificationResponse(**record.to_dict())


@router.get(
    "/{escrow_id}/verification",
    response_model=PipelineRunResponse,
    summary="Status of the in-flight verification run",
)
async def verification_status(
    escrow_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> PipelineRunResponse:
    escrow_id = _normalize(escrow_id)
    run = orchestrator.status(escrow_id)
    if run is None:
        return PipelineRunResponse(escrow_id=escrow_id, in_flight=False)
    return PipelineRunResponse(in_flight=True, **run.to_dict())


@router.delete(
    "/{escrow_id}/verification",
    response_model=PipelineRunResponse,
    status_code=202,
    summary="Cancel the in-flight verification run",
)
async def cancel_verification(
    escrow_id: str,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> PipelineRunResponse:
    run = orchestrator.cancel(_normalize(escrow_id))
    return PipelineRunResponse(in_flight=True, **run.to_dict())


# ---------------------------------------------------------------------------
# Release / Dispute
# ---------------------------------------------------------------------------


@router.post(
    "/{escrow_id}/release",
    response_model=TransactionResponse,
    summary="Release the vault to the seller (minus protocol fee)",
)
async def release_funds(
    escrow_id: str,
    client: EscrowClient = Depends(get_escrow_client),
) -> TransactionResponse:
    result = await client.release_funds(_normalize(escrow_id))
    return TransactionResponse(**result.to_dict())


@router.post(
    "/{escrow_id}/dispute",
    response_model=TransactionResponse,
    summary="Raise a dispute and halt automatic release",
)
async def raise_dispute(
    escrow_id: str,
    request: RaiseDisputeRequest,
    client: EscrowClient = Depends(get_escrow_client),
) -> TransactionResponse:
    reason_digest = hashlib.sha256(request.reason.encode("utf-8")).digest()
    result = await client.raise_dispute(_normalize(escrow_id), reason_digest, request.caller)
    logger.info("escrow.dispute_requested", escrow_id=escrow_id, caller=request.caller)
    return TransactionResponse(**result.to_dict())
