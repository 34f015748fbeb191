"""Boundary protocols.

Every external collaborator of the pipeline (content-addressed storage, the
on-chain account store, the single-flight lease backend) and every pipeline
stage is described here as a Protocol (structural subtyping), so concrete
adapters and test doubles don't need to inherit from a base class — they just
need to match the shape.

The domain layer has ZERO imports from httpx, LiteLLM, solana or Redis.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from aetherlock_oracle.domain.models import (
    Attestation,
    EscrowAccount,
    EvidenceFile,
    EvidenceManifest,
    ProgramInstruction,
    Verdict,
)


@runtime_checkable
class ContentStore(Protocol):
    """Content-addressed storage backend (IPFS pinning service).

    Concrete implementations:
        - infrastructure/pinata_client.py  (Pinata pinning API over httpx)
    """

    async def pin(self, files: Sequence[EvidenceFile], label: str) -> str:
        """Upload files as one bundle and return its content identifier.

        Raises:
            StorageUnavailableError: On network or service failure.
        """
        ...

    def gateway_url(self, content_id: str) -> str:
        """Public retrieval URL for a content identifier."""
        ...


@runtime_checkable
class EscrowProgram(Protocol):
    """The on-chain escrow program, treated as a black-box account store.

    Concrete implementations:
        - infrastructure/solana_program.py  (solana-py RPC + solders)
    """

    def derive_escrow_address(self, escrow_id: bytes) -> str:
        ...

    def derive_vault_address(self, escrow_address: str) -> str:
        ...

    async def fetch_escrow(self, escrow_address: str) -> EscrowAccount | None:
        """Read and decode an escrow account; None when it does not exist.

        Raises:
            ChainRpcError: When the RPC node cannot be reached.
        """
        ...

    async def send(self, instruction: ProgramInstruction) -> str:
        """Send one instruction, wait for confirmation, return the transaction signature.

        Raises:
            ChainRpcError: Transport failure or confirmation timeout (retryable).
            ProgramRejectedError: The program refused the instruction.
        """
        ...


class EvidenceUploader(Protocol):
    async def upload(self, files: Sequence[EvidenceFile], escrow_id: str = "") -> EvidenceManifest:
        ...


class VerdictProvider(Protocol):
    async def analyze(self, task_description: str, manifest: EvidenceManifest) -> Verdict:
        ...


class AttestationProvider(Protocol):
    @property
    def public_key(self) -> bytes:
        ...

    def sign_verdict(
        self, escrow_id: bytes, verdict: Verdict, manifest: EvidenceManifest
    ) -> Attestation:
        ...


@runtime_checkable
class FlightGuard(Protocol):
    """Single-flight lease keyed by escrow id.

    Concrete implementations:
        - orchestration/single_flight.py  (in-process asyncio registry)
        - infrastructure/redis_client.py  (Redis SET NX EX lease)
    """

    async def acquire(self, key: str) -> str | None:
        """Take the lease. Returns a release token, or None if already held."""
        ...

    async def release(self, key: str, token: str) -> None:
        ...
