"""Evidence helper routes."""

from __future__ import annotations

from fastapi import APIRouter

from aetherlock_oracle.domain.models import evidence_digest
from aetherlock_oracle.schemas.escrow import EvidenceHashRequest, EvidenceHashResponse

router = APIRouter(prefix="/api/v1/evidence", tags=["Evidence"])


@router.post(
    "/hash",
    response_model=EvidenceHashResponse,
    summary="Compute the binding digest of an evidence bundle",
    description="SHA-256 over the UTF-8 content identifier, as signed into attestations.",
)
async def evidence_hash(request: EvidenceHashRequest) -> EvidenceHashResponse:
    return EvidenceHashResponse(
        content_id=request.content_id,
        digest=evidence_digest(request.content_id).hex(),
    )
