"""Shared test fixtures for the AetherLock oracle test suite.

Provides:
    - In-memory stand-ins for the content store and the on-chain program
    - A scripted adjudicator
    - A throwaway SQLite gateway database
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace

import pytest
import pytest_asyncio
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from aetherlock_oracle.domain.enums import EscrowStatus
from aetherlock_oracle.domain.exceptions import ProgramRejectedError
from aetherlock_oracle.domain.models import (
    Attestation,
    EscrowAccount,
    EscrowParams,
    EvidenceFile,
    EvidenceManifest,
    ProgramInstruction,
    Verdict,
    encode_attestation_message,
)
from aetherlock_oracle.infrastructure.database.engine import GatewayDatabase
from aetherlock_oracle.services.attestation_signer import AttestationSigner, verify_attestation
from aetherlock_oracle.services.escrow_client import EscrowClient, fee_split
from aetherlock_oracle.services.evidence_store import EvidenceStore

NOW = 1_760_000_000
ESCROW_ID = "9f1c2a7e4b3d4c5e8f901a2b3c4d5e6f"
BUYER = str(Keypair().pubkey())
SELLER = str(Keypair().pubkey())
OUTSIDER = str(Keypair().pubkey())
TOKEN_MINT = str(Keypair().pubkey())
TREASURY = str(Keypair().pubkey())
DISPUTE_WINDOW = 48 * 60 * 60
TASK = "Build responsive landing page"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class InMemoryContentStore:
    """Content-addressed store keyed by a hash of the bundle."""

    def __init__(self) -> None:
        self.pins = 0
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None

    async def pin(self, files: Sequence[EvidenceFile], label: str) -> str:
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        h = hashlib.sha256()
        for f in files:
            h.update(f.name.encode())
            h.update(f.content)
        self.pins += 1
        return "bafy" + h.hexdigest()[:52]

    def gateway_url(self, content_id: str) -> str:
        return f"https://gateway.test/ipfs/{content_id}"


class InMemoryEscrowProgram:
    """Account store with the on-chain program's preconditions."""

    def __init__(self, dispute_window: int = DISPUTE_WINDOW, fee_bps: int = 200) -> None:
        self.accounts: dict[str, EscrowAccount] = {}
        self.sent: list[ProgramInstruction] = []
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self._dispute_window = dispute_window
        self._fee_bps = fee_bps

    @property
    def sends(self) -> Counter:
        return Counter(ix.name for ix in self.sent)

    def derive_escrow_address(self, escrow_id: bytes) -> str:
        return f"escrow-{escrow_id.hex()}"

    def derive_vault_address(self, escrow_address: str) -> str:
        return f"vault-{escrow_address}"

    async def fetch_escrow(self, escrow_address: str) -> EscrowAccount | None:
        return self.accounts.get(escrow_address)

    async def send(self, instruction: ProgramInstruction) -> str:
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        handler = getattr(self, f"_apply_{instruction.name}")
        address = instruction.accounts["escrow"]
        self.accounts[address] = handler(self.accounts.get(address), instruction)
        self.sent.append(instruction)
        return f"sig-{instruction.name}-{len(self.sent)}"

    def _require(self, account: EscrowAccount | None, status: EscrowStatus, ix: str) -> EscrowAccount:
        if account is None or account.status != status:
            raise ProgramRejectedError(ix, "invalid status")
        return account

    def _apply_initialize_escrow(self, account, ix):  # noqa: ANN001, ANN202
        if account is not None:
            raise ProgramRejectedError(ix.name, "account already in use")
        args = ix.args
        return EscrowAccount(
            escrow_id=ix.escrow_id,
            address=ix.accounts["escrow"],
            buyer=ix.accounts["buyer"],
            seller=args["seller"],
            token_mint=ix.accounts["token_mint"],
            amount=args["amount"],
            fee_amount=0,
            status=EscrowStatus.CREATED,
            expiry=args["expiry"],
            metadata_hash=args["metadata_hash"],
            ai_agent_pubkey=args["ai_agent_pubkey"],
        )

    def _apply_deposit_funds(self, account, ix):  # noqa: ANN001, ANN202
        account = self._require(account, EscrowStatus.CREATED, ix.name)
        return replace(account, status=EscrowStatus.FUNDED)

    def _apply_submit_verification(self, account, ix):  # noqa: ANN001, ANN202
        account = self._require(account, EscrowStatus.FUNDED, ix.name)
        args = ix.args
        message = encode_attestation_message(
            bytes.fromhex(account.escrow_id), args["result"], args["evidence_hash"], args["timestamp"]
        )
        attestation = Attestation(
            signature=args["signature"],
            message=message,
            public_key=bytes(Pubkey.from_string(account.ai_agent_pubkey)),
        )
        if not verify_attestation(attestation):
            raise ProgramRejectedError(ix.name, "signature verification failed")
        return replace(
            account,
            status=EscrowStatus.VERIFICATION_SUBMITTED,
            verification_result=args["result"],
            evidence_hash=args["evidence_hash"],
            verification_timestamp=args["timestamp"],
            dispute_deadline=args["timestamp"] + self._dispute_window,
        )

    def _apply_release_funds(self, account, ix):  # noqa: ANN001, ANN202
        account = self._require(account, EscrowStatus.VERIFICATION_SUBMITTED, ix.name)
        _, fee = fee_split(account.amount, self._fee_bps)
        return replace(account, status=EscrowStatus.RELEASED, fee_amount=fee)

    def _apply_raise_dispute(self, account, ix):  # noqa: ANN001, ANN202
        account = self._require(account, EscrowStatus.VERIFICATION_SUBMITTED, ix.name)
        return replace(account, status=EscrowStatus.DISPUTED, dispute_raised=True)


class FakeAdjudicator:
    """Returns a scripted verdict; optionally fails or blocks first."""

    def __init__(self, result: bool = True, confidence: int = 85, timestamp: int = NOW) -> None:
        self.result = result
        self.confidence = confidence
        self.timestamp = timestamp
        self.calls = 0
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None

    async def analyze(self, task_description: str, manifest: EvidenceManifest) -> Verdict:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        return Verdict(
            result=self.result,
            confidence=self.confidence,
            reasoning="Scripted verdict",
            timestamp=self.timestamp,
        )


class Clock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def signer() -> AttestationSigner:
    return AttestationSigner(Keypair())


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def evidence_store(content_store: InMemoryContentStore) -> EvidenceStore:
    return EvidenceStore(content_store, max_total_bytes=1024, max_files=5)


@pytest.fixture
def program() -> InMemoryEscrowProgram:
    return InMemoryEscrowProgram()


@pytest.fixture
def escrow_client(program: InMemoryEscrowProgram, clock: Clock) -> EscrowClient:
    return EscrowClient(
        program,
        authority=BUYER,
        treasury=TREASURY,
        protocol_fee_bps=200,
        dispute_window_seconds=DISPUTE_WINDOW,
        clock=clock,
    )


@pytest.fixture
def adjudicator() -> FakeAdjudicator:
    return FakeAdjudicator()


@pytest.fixture
def escrow_params(signer: AttestationSigner) -> EscrowParams:
    return EscrowParams(
        escrow_id=ESCROW_ID,
        buyer=BUYER,
        seller=SELLER,
        token_mint=TOKEN_MINT,
        amount=1_000_000,
        expiry=NOW + 7 * 24 * 60 * 60,
        task_description=TASK,
        ai_agent_pubkey=signer.public_key_base58,
    )


@pytest_asyncio.fixture
async def funded_escrow(escrow_client: EscrowClient, escrow_params: EscrowParams) -> EscrowAccount:
    await escrow_client.create_escrow(escrow_params)
    await escrow_client.deposit_funds(ESCROW_ID)
    return await escrow_client.get_escrow(ESCROW_ID)


@pytest.fixture
def evidence_files() -> list[EvidenceFile]:
    return [
        EvidenceFile(name="index.html", mime_type="text/html", content=b"<html>landing</html>"),
        EvidenceFile(name="screenshot.png", mime_type="image/png", content=b"\x89PNG fake"),
    ]


@pytest_asyncio.fixture
async def gateway_db(tmp_path) -> AsyncIterator[GatewayDatabase]:  # noqa: ANN001
    database = GatewayDatabase(f"sqlite+aiosqlite:///{tmp_path}/gateway.db")
    await database.create_all()
    yield database
    await database.dispose()
