"""Application services — evidence custody, signing, and escrow state drivers."""

from aetherlock_oracle.services.attestation_signer import (
    AttestationSigner,
    load_signer,
    verify_attestation,
)
from aetherlock_oracle.services.escrow_client import EscrowClient
from aetherlock_oracle.services.evidence_store import EvidenceStore
from aetherlock_oracle.services.gateway_service import GatewayEscrowService

__all__ = [
    "AttestationSigner",
    "EscrowClient",
    "EvidenceStore",
    "GatewayEscrowService",
    "load_signer",
    "verify_attestation",
]
