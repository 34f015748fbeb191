"""Pydantic schemas for the escrow, evidence and key APIs.

These schemas define the request/response shapes for the REST API. They are
separate from the domain dataclasses to keep the wire format independent of
the internal models.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

ESCROW_ID_PATTERN = r"^(0x)?[0-9a-fA-F]{32}$"
BASE58_ADDRESS_PATTERN = r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEscrowRequest(BaseModel):
    """Request body for createEscrow."""

    escrow_id: str = Field(
        ...,
        pattern=ESCROW_ID_PATTERN,
        description="Caller-supplied 16-byte escrow id, 32 hex characters",
        examples=["9f1c2a7e4b3d4c5e8f901a2b3c4d5e6f"],
    )
    buyer: str = Field(..., pattern=BASE58_ADDRESS_PATTERN, description="Buyer wallet (must be the service wallet)")
    seller: str = Field(..., pattern=BASE58_ADDRESS_PATTERN, description="Seller wallet")
    token_mint: str = Field(..., pattern=BASE58_ADDRESS_PATTERN, description="SPL token mint of the escrowed asset")
    amount: int = Field(..., gt=0, description="Amount in the token's smallest unit")
    expiry: int = Field(..., gt=0, description="Expiry as unix seconds")
    task_description: str = Field(
        ...,
        min_length=10,
        max_length=5000,
        description="What the seller must deliver; hashed into the escrow metadata",
        examples=["Build responsive landing page"],
    )
    ai_agent_pubkey: str | None = Field(
        default=None,
        pattern=BASE58_ADDRESS_PATTERN,
        description="Attestation key the program will trust. Defaults to this service's key.",
    )


class RaiseDisputeRequest(BaseModel):
    """Request body for raiseDispute."""

    caller: str = Field(..., pattern=BASE58_ADDRESS_PATTERN, description="Buyer or seller wallet")
    reason: str = Field(
        ...,
        min_length=10,
        max_length=2000,
        description="Dispute reason; only its SHA-256 digest goes on chain",
    )


class EvidenceHashRequest(BaseModel):
    content_id: str = Field(..., min_length=1, max_length=128, description="IPFS content identifier")


class VerifyAttestationRequest(BaseModel):
    """An attestation to check, hex encoded."""

    signature: str = Field(..., pattern=r"^[0-9a-fA-F]{128}$")
    message: str = Field(..., pattern=r"^[0-9a-fA-F]{114}$")
    public_key: str | None = Field(
        default=None,
        pattern=r"^[0-9a-fA-F]{64}$",
        description="Key to verify against. Defaults to this service's attestation key.",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowAccountResponse(BaseModel):
    """Decoded on-chain escrow account."""

    escrow_id: str
    address: str
    buyer: str
    seller: str
    token_mint: str
    amount: int
    fee_amount: int
    status: str
    expiry: int
    metadata_hash: str
    ai_agent_pubkey: str
    verification_result: bool | None = None
    evidence_hash: str | None = None
    verification_timestamp: int | None = None
    dispute_raised: bool = False
    dispute_deadline: int | None = None
    phase: str | None = Field(None, description="Shared lifecycle phase: CREATED, FUNDED, VERIFIED, RELEASED or DISPUTED")


class TransactionResponse(BaseModel):
    """Outcome of one guarded state transition."""

    escrow_id: str
    escrow_address: str
    status: str
    signature: str | None = Field(None, description="Transaction signature; null when already applied")
    already_applied: bool = False
    details: dict = Field(default_factory=dict)


class EvidenceFileResponse(BaseModel):
    name: str
    type: str
    size: int


class EvidenceManifestResponse(BaseModel):
    content_id: str
    digest: str
    gateway_url: str
    total_bytes: int
    files: list[EvidenceFileResponse]


class VerdictResponse(BaseModel):
    result: bool
    confidence: int = Field(..., ge=0, le=100)
    reasoning: str
    timestamp: int


class AttestationResponse(BaseModel):
    signature: str
    message: str
    public_key: str


class VerificationResponse(BaseModel):
    """Full success record of a verification run, for audit display."""

    escrow_id: str
    verdict: VerdictResponse
    evidence: EvidenceManifestResponse
    attestation: AttestationResponse
    transaction: TransactionResponse


class PipelineRunResponse(BaseModel):
    escrow_id: str
    in_flight: bool
    stage: str | None = None
    cancellable: bool = False
    cancel_requested: bool = False
    started_at: int | None = None
    attempts: dict[str, int] = Field(default_factory=dict)


class EvidenceHashResponse(BaseModel):
    content_id: str
    digest: str = Field(..., description="SHA-256 of the UTF-8 content identifier, hex")


class PublicKeyResponse(BaseModel):
    public_key: str = Field(..., description="Base58 Ed25519 public key")
    public_key_hex: str
    key_type: str = "Ed25519"
    usage: str = "verification_signing"


class VerifyAttestationResponse(BaseModel):
    valid: bool
    escrow_id: str
    result: bool
    evidence_digest: str
    timestamp: int


class HealthResponse(BaseModel):
    """Response for the health check endpoint."""

    status: str = Field(..., description="Overall health: 'ok' or 'degraded'")
    version: str
    database: str = Field(..., description="Gateway database connection status")
    redis: str = Field(..., description="Redis connection status")
    signer: str = Field(..., description="Attestation key status")
