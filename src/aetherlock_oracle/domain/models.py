"""Value objects exchanged between the pipeline components.

All models are frozen dataclasses: an EvidenceManifest, Verdict or
Attestation is created once and never mutated afterwards. The domain layer
has ZERO imports from httpx, LiteLLM, solana or any external service.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any

from aetherlock_oracle.domain.enums import EscrowStatus
from aetherlock_oracle.domain.exceptions import InvalidRequestError
from aetherlock_oracle.domain.state_machine import EscrowLifecycle

ESCROW_ID_LENGTH = 16
GATEWAY_ID_LENGTH = 32
DIGEST_LENGTH = 32
SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 32

# escrow_id[16] || result[1] || evidence_digest[32] || timestamp u64 big-endian[8]
_ATTESTATION_LAYOUT = struct.Struct(">16s?32sQ")
ATTESTATION_MESSAGE_LENGTH = _ATTESTATION_LAYOUT.size


def parse_escrow_id(escrow_id: str) -> bytes:
    """Decode a 32-hex-character escrow id into its 16 raw bytes."""
    raw = escrow_id.removeprefix("0x")
    try:
        value = bytes.fromhex(raw)
    except ValueError as err:
        raise InvalidRequestError(f"Escrow id is not hex: {escrow_id!r}") from err
    if len(value) != ESCROW_ID_LENGTH:
        raise InvalidRequestError(
            f"Escrow id must be {ESCROW_ID_LENGTH} bytes, got {len(value)}"
        )
    return value


def to_gateway_id(escrow_id: str) -> str:
    """Normalize a 16- or 32-byte id to the 32-byte gateway form (left zero-padded)."""
    raw = escrow_id.removeprefix("0x").lower()
    try:
        value = bytes.fromhex(raw)
    except ValueError as err:
        raise InvalidRequestError(f"Escrow id is not hex: {escrow_id!r}") from err
    if len(value) not in (ESCROW_ID_LENGTH, GATEWAY_ID_LENGTH):
        raise InvalidRequestError(
            f"Gateway escrow id must be {ESCROW_ID_LENGTH} or {GATEWAY_ID_LENGTH} bytes"
        )
    return value.rjust(GATEWAY_ID_LENGTH, b"\x00").hex()


def encode_attestation_message(
    escrow_id: bytes, result: bool, evidence_digest: bytes, timestamp: int
) -> bytes:
    """Build the fixed-width attestation message. Field order is a wire contract."""
    if len(escrow_id) != ESCROW_ID_LENGTH:
        raise InvalidRequestError(f"escrow_id must be {ESCROW_ID_LENGTH} bytes")
    if len(evidence_digest) != DIGEST_LENGTH:
        raise InvalidRequestError(f"evidence_digest must be {DIGEST_LENGTH} bytes")
    if timestamp < 0:
        raise InvalidRequestError("timestamp must be non-negative")
    return _ATTESTATION_LAYOUT.pack(escrow_id, result, evidence_digest, timestamp)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvidenceFile:
    """One evidence payload as received from the freelancer.

    Attributes:
        name: Original file name. Must be non-empty.
        mime_type: Declared MIME type.
        content: Raw bytes. Never cached beyond the upload call.
        declared_size: Size claimed by the client, checked against the payload.
    """

    name: str
    mime_type: str
    content: bytes
    declared_size: int | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class EvidenceEntry:
    file_name: str
    mime_type: str
    byte_size: int

    def to_dict(self) -> dict:
        return {"name": self.file_name, "type": self.mime_type, "size": self.byte_size}


@dataclass(frozen=True)
class EvidenceManifest:
    """Listing of one uploaded evidence bundle plus its binding digest.

    Attributes:
        entries: (name, type, size) of every file in the bundle.
        content_id: Content identifier (IPFS CID) of the whole bundle.
        digest: SHA-256 over the UTF-8 content identifier (32 bytes).
        gateway_url: Fetchable reference any party can use to retrieve it.
    """

    entries: tuple[EvidenceEntry, ...]
    content_id: str
    digest: bytes
    gateway_url: str = ""

    @property
    def total_bytes(self) -> int:
        return sum(entry.byte_size for entry in self.entries)

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "digest": self.digest_hex,
            "gateway_url": self.gateway_url,
            "total_bytes": self.total_bytes,
            "files": [entry.to_dict() for entry in self.entries],
        }


def evidence_digest(content_id: str) -> bytes:
    """Binding digest of an evidence bundle: SHA-256 of its content identifier."""
    return hashlib.sha256(content_id.encode("utf-8")).digest()


# ---------------------------------------------------------------------------
# Adjudication
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Verdict:
    """Outcome of one adjudication.

    Attributes:
        result: Final pass/fail after the confidence floor is applied.
        confidence: Integer 0-100 reported by the judgment service.
        reasoning: The service's explanation.
        timestamp: Unix seconds at which the verdict was produced.
    """

    result: bool
    confidence: int
    reasoning: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "result": self.result,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Attestation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attestation:
    """A signed statement binding a verdict to an escrow and evidence fingerprint."""

    signature: bytes
    message: bytes
    public_key: bytes

    def _fields(self) -> tuple[bytes, bool, bytes, int]:
        return _ATTESTATION_LAYOUT.unpack(self.message)

    @property
    def escrow_id(self) -> bytes:
        return self._fields()[0]

    @property
    def result(self) -> bool:
        return self._fields()[1]

    @property
    def evidence_digest(self) -> bytes:
        return self._fields()[2]

    @property
    def timestamp(self) -> int:
        return self._fields()[3]

    def to_dict(self) -> dict:
        return {
            "signature": self.signature.hex(),
            "message": self.message.hex(),
            "public_key": self.public_key.hex(),
        }


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EscrowParams:
    """Parameters for createEscrow. The amount is fixed here and never changes."""

    escrow_id: str
    buyer: str
    seller: str
    token_mint: str
    amount: int
    expiry: int
    task_description: str
    ai_agent_pubkey: str

    @property
    def metadata_hash(self) -> bytes:
        return hashlib.sha256(self.task_description.encode("utf-8")).digest()


@dataclass(frozen=True)
class EscrowAccount:
    """Decoded state of one on-chain escrow account."""

    escrow_id: str
    address: str
    buyer: str
    seller: str
    token_mint: str
    amount: int
    fee_amount: int
    status: EscrowStatus
    expiry: int
    metadata_hash: bytes
    ai_agent_pubkey: str
    verification_result: bool | None = None
    evidence_hash: bytes | None = None
    verification_timestamp: int | None = None
    dispute_raised: bool = False
    dispute_deadline: int | None = None
    bump: int = 0

    @property
    def phase(self) -> str | None:
        """Shared lifecycle phase of the account status; None once refunded."""
        phase = EscrowLifecycle(self.status.value).phase
        return phase.value if phase else None

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "address": self.address,
            "buyer": self.buyer,
            "seller": self.seller,
            "token_mint": self.token_mint,
            "amount": self.amount,
            "fee_amount": self.fee_amount,
            "status": self.status.value,
            "expiry": self.expiry,
            "metadata_hash": self.metadata_hash.hex(),
            "ai_agent_pubkey": self.ai_agent_pubkey,
            "verification_result": self.verification_result,
            "evidence_hash": self.evidence_hash.hex() if self.evidence_hash else None,
            "verification_timestamp": self.verification_timestamp,
            "dispute_raised": self.dispute_raised,
            "dispute_deadline": self.dispute_deadline,
            "phase": self.phase,
        }


@dataclass(frozen=True)
class ProgramInstruction:
    """One call through the fixed on-chain instruction interface.

    Attributes:
        name: initialize_escrow | deposit_funds | submit_verification |
              release_funds | raise_dispute
        escrow_id: Hex escrow id the instruction targets.
        accounts: Role name -> base58 address.
        args: Instruction arguments, already in wire-ready Python types.
    """

    name: str
    escrow_id: str
    accounts: dict[str, str]
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of one guarded state transition.

    ``already_applied`` is True when the transition had already happened on
    chain and nothing was sent; ``signature`` is then None.
    """

    escrow_id: str
    escrow_address: str
    status: EscrowStatus
    signature: str | None = None
    already_applied: bool = False
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "escrow_address": self.escrow_address,
            "status": self.status.value,
            "signature": self.signature,
            "already_applied": self.already_applied,
            "details": self.details,
        }


@dataclass(frozen=True)
class VerificationRecord:
    """Full success record of a pipeline run, returned for audit display."""

    escrow_id: str
    verdict: Verdict
    manifest: EvidenceManifest
    attestation: Attestation
    transaction: TransactionResult

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "verdict": self.verdict.to_dict(),
            "evidence": self.manifest.to_dict(),
            "attestation": self.attestation.to_dict(),
            "transaction": self.transaction.to_dict(),
        }
