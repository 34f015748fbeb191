"""Attestation key routes.

Anyone holding an attestation can check it against the published key
without trusting this service.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from aetherlock_oracle.api.deps import get_signer
from aetherlock_oracle.domain.models import Attestation
from aetherlock_oracle.schemas.escrow import (
    PublicKeyResponse,
    VerifyAttestationRequest,
    VerifyAttestationResponse,
)
from aetherlock_oracle.services.attestation_signer import AttestationSigner, verify_attestation

router = APIRouter(prefix="/api/v1/keys", tags=["Keys"])


@router.get(
    "/public",
    response_model=PublicKeyResponse,
    summary="Attestation public key",
)
async def public_key(signer: AttestationSigner = Depends(get_signer)) -> PublicKeyResponse:
    return PublicKeyResponse(**signer.key_info())


@router.post(
    "/verify",
    response_model=VerifyAttestationResponse,
    summary="Check an attestation signature",
)
async def verify(
    request: VerifyAttestationRequest,
    signer: AttestationSigner = Depends(get_signer),
) -> VerifyAttestationResponse:
    key = bytes.fromhex(request.public_key) if request.public_key else signer.public_key
    attestation = Attestation(
        signature=bytes.fromhex(request.signature),
        message=bytes.fromhex(request.message),
        public_key=key,
    )
    return VerifyAttestationResponse(
        valid=verify_attestation(attestation, key),
        escrow_id=attestation.escrow_id.hex(),
        result=attestation.result,
        evidence_digest=attestation.evidence_digest.hex(),
        timestamp=attestation.timestamp,
    )
