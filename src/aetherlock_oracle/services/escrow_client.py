"""Escrow Client — guarded state transitions against the on-chain escrow program.

Every operation re-reads the escrow account before acting, so the client is
a stateless driver that tolerates crash-restart:

    1. Fetch current on-chain status.
    2. If the requested transition has already been applied, return the
       existing result (``already_applied=True``) without sending anything.
    3. Otherwise validate the transition with the EscrowLifecycle guard and
       any operation-specific precondition, then send exactly one instruction.

There is no local lock on chain state: the program is the authority and the
fresh status read substitutes for client-side locking.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from aetherlock_oracle.domain.enums import EscrowStatus
from aetherlock_oracle.domain.exceptions import (
    EscrowNotFoundError,
    InvalidRequestError,
    InvalidStateTransitionError,
    UnauthorizedPartyError,
)
from aetherlock_oracle.domain.models import (
    DIGEST_LENGTH,
    ProgramInstruction,
    TransactionResult,
    parse_escrow_id,
)
from aetherlock_oracle.domain.state_machine import EscrowLifecycle
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from aetherlock_oracle.config import Settings
    from aetherlock_oracle.domain.models import Attestation, EscrowAccount, EscrowParams
    from aetherlock_oracle.domain.protocols import EscrowProgram

logger = get_logger(__name__)

BPS_DENOMINATOR = 10_000


def fee_split(amount: int, fee_bps: int) -> tuple[int, int]:
    """Return (seller_amount, fee_amount) for a release."""
    fee = amount * fee_bps // BPS_DENOMINATOR
    return amount - fee, fee


class EscrowClient:
    """Drives one escrow account through create, deposit, verify, release and dispute."""

    def __init__(
        self,
        program: EscrowProgram,
        authority: str,
        treasury: str,
        protocol_fee_bps: int = 200,
        dispute_window_seconds: int = 48 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._program = program
        self._authority = authority
        self._treasury = treasury
        self._fee_bps = protocol_fee_bps
        self._dispute_window = dispute_window_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls, program: EscrowProgram, authority: str, settings: Settings
    ) -> EscrowClient:
        return cls(
            program,
            authority=authority,
            treasury=settings.protocol_treasury,
            protocol_fee_bps=settings.protocol_fee_bps,
            dispute_window_seconds=settings.dispute_window_seconds,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def escrow_address(self, escrow_id: str) -> str:
        return self._program.derive_escrow_address(parse_escrow_id(escrow_id))

    async def get_escrow(self, escrow_id: str) -> EscrowAccount:
        """Fetch the current account state; raises EscrowNotFoundError if absent."""
        account = await self._program.fetch_escrow(self.escrow_address(escrow_id))
        if account is None:
            raise EscrowNotFoundError(escrow_id)
        return account

    # ------------------------------------------------------------------
    # createEscrow
    # ------------------------------------------------------------------

    async def create_escrow(self, params: EscrowParams) -> TransactionResult:
        """Initialize a new escrow account. Requires the id to be unused."""
        escrow_bytes = parse_escrow_id(params.escrow_id)
        if params.amount <= 0:
            raise InvalidRequestError("Escrow amount must be positive")
        if params.expiry <= int(self._clock()):
            raise InvalidRequestError("Escrow expiry must be in the future")

        address = self._program.derive_escrow_address(escrow_bytes)
        vault = self._program.derive_vault_address(address)
        existing = await self._program.fetch_escrow(address)
        if existing is not None:
            if self._same_terms(existing, params):
                return self._already_applied(existing, "initialize_escrow")
            raise InvalidStateTransitionError(
                existing.status, EscrowStatus.CREATED, "escrow id already in use"
            )

        instruction = ProgramInstruction(
            name="initialize_escrow",
            escrow_id=params.escrow_id,
            accounts={
                "buyer": params.buyer,
                "escrow": address,
                "token_mint": params.token_mint,
            },
            args={
                "escrow_id": escrow_bytes,
                "seller": params.seller,
                "amount": params.amount,
                "expiry": params.expiry,
                "metadata_hash": params.metadata_hash,
                "ai_agent_pubkey": params.ai_agent_pubkey,
            },
        )
        signature = await self._program.send(instruction)
        logger.info(
            "escrow.created",
            escrow_id=params.escrow_id,
            address=address,
            amount=params.amount,
            signature=signature,
        )
        return TransactionResult(
            escrow_id=params.escrow_id,
            escrow_address=address,
            status=EscrowStatus.CREATED,
            signature=signature,
            details={"vault_address": vault},
        )

    # ------------------------------------------------------------------
    # depositFunds
    # ------------------------------------------------------------------

    async def deposit_funds(self, escrow_id: str) -> TransactionResult:
        """Move the committed amount from the buyer into the vault. Requires CREATED."""
        account = await self.get_escrow(escrow_id)
        if account.status == EscrowStatus.FUNDED:
            return self._already_applied(account, "deposit_funds")
        self._fire_transition(account, "deposit_funds")

        vault = self._program.derive_vault_address(account.address)
        signature = await self._program.send(
            ProgramInstruction(
                name="deposit_funds",
                escrow_id=escrow_id,
                accounts={
                    "buyer": account.buyer,
                    "escrow": account.address,
                    "escrow_vault": vault,
                    "token_mint": account.token_mint,
                },
            )
        )
        logger.info("escrow.deposit_sent", escrow_id=escrow_id, amount=account.amount, signature=signature)
        return TransactionResult(
            escrow_id=escrow_id,
            escrow_address=account.address,
            status=EscrowStatus.FUNDED,
            signature=signature,
            details={"vault_address": vault, "amount": account.amount},
        )

    # ------------------------------------------------------------------
    # submitVerification
    # ------------------------------------------------------------------

    async def submit_verification(self, escrow_id: str, attestation: Attestation) -> TransactionResult:
        """Post an attestation on chain. Requires FUNDED.

        The program verifies the signature against the escrow's AI-agent key;
        a rejection surfaces as ProgramRejectedError.
        """
        if attestation.escrow_id != parse_escrow_id(escrow_id):
            raise InvalidRequestError("Attestation was issued for a different escrow")

        account = await self.get_escrow(escrow_id)
        if (
            account.status != EscrowStatus.FUNDED
            and account.evidence_hash == attestation.evidence_digest
            and account.verification_result == attestation.result
        ):
            return self._already_applied(account, "submit_verification")
        self._fire_transition(account, "submit_verification")

        signature = await self._program.send(
            ProgramInstruction(
                name="submit_verification",
                escrow_id=escrow_id,
                accounts={
                    "authority": self._authority,
                    "escrow": account.address,
                    "ai_agent": account.ai_agent_pubkey,
                },
                args={
                    "result": attestation.result,
                    "evidence_hash": attestation.evidence_digest,
                    "timestamp": attestation.timestamp,
                    "signature": attestation.signature,
                },
            )
        )
        logger.info(
            "escrow.verification_sent",
            escrow_id=escrow_id,
            result=attestation.result,
            signature=signature,
        )
        return TransactionResult(
            escrow_id=escrow_id,
            escrow_address=account.address,
            status=EscrowStatus.VERIFICATION_SUBMITTED,
            signature=signature,
            details={
                "result": attestation.result,
                "evidence_hash": attestation.evidence_digest.hex(),
                "dispute_window_ends": attestation.timestamp + self._dispute_window,
            },
        )

    # ------------------------------------------------------------------
    # releaseFunds
    # ------------------------------------------------------------------

    async def release_funds(self, escrow_id: str) -> TransactionResult:
        """Pay the seller and the treasury fee share.

        Requires VERIFICATION_SUBMITTED with a passing result, no dispute, and
        the dispute window elapsed. Any failed precondition raises
        InvalidStateTransitionError and sends nothing.
        """
        account = await self.get_escrow(escrow_id)
        split = self._release_split(account)
        if account.status == EscrowStatus.RELEASED:
            return self._already_applied(account, "release_funds", split)

        self._fire_transition(account, "release_funds")
        if account.verification_result is not True:
            raise InvalidStateTransitionError(
                account.status, EscrowStatus.RELEASED, "verification did not pass"
            )
        if account.dispute_raised:
            raise InvalidStateTransitionError(
                account.status, EscrowStatus.RELEASED, "dispute raised"
            )
        window_ends = (account.verification_timestamp or 0) + self._dispute_window
        if int(self._clock()) < window_ends:
            raise InvalidStateTransitionError(
                account.status,
                EscrowStatus.RELEASED,
                f"dispute window open until {window_ends}",
            )

        signature = await self._program.send(
            ProgramInstruction(
                name="release_funds",
                escrow_id=escrow_id,
                accounts={
                    "authority": self._authority,
                    "escrow": account.address,
                    "escrow_vault": self._program.derive_vault_address(account.address),
                    "seller": account.seller,
                    "treasury": self._treasury,
                    "token_mint": account.token_mint,
                },
            )
        )
        logger.info("escrow.release_sent", escrow_id=escrow_id, signature=signature, **split)
        return TransactionResult(
            escrow_id=escrow_id,
            escrow_address=account.address,
            status=EscrowStatus.RELEASED,
            signature=signature,
            details=split,
        )

    # ------------------------------------------------------------------
    # raiseDispute
    # ------------------------------------------------------------------

    async def raise_dispute(self, escrow_id: str, reason_digest: bytes, caller: str) -> TransactionResult:
        """Halt automatic release. Requires VERIFICATION_SUBMITTED; caller must be buyer or seller."""
        if len(reason_digest) != DIGEST_LENGTH:
            raise InvalidRequestError(f"Dispute reason digest must be {DIGEST_LENGTH} bytes")

        account = await self.get_escrow(escrow_id)
        if caller not in (account.buyer, account.seller):
            raise UnauthorizedPartyError(escrow_id, caller)
        if account.status == EscrowStatus.DISPUTED:
            return self._already_applied(account, "raise_dispute")
        self._fire_transition(account, "raise_dispute")

        signature = await self._program.send(
            ProgramInstruction(
                name="raise_dispute",
                escrow_id=escrow_id,
                accounts={"participant": caller, "escrow": account.address},
                args={"reason_hash": reason_digest},
            )
        )
        logger.info("escrow.dispute_sent", escrow_id=escrow_id, caller=caller, signature=signature)
        return TransactionResult(
            escrow_id=escrow_id,
            escrow_address=account.address,
            status=EscrowStatus.DISPUTED,
            signature=signature,
            details={"reason_hash": reason_digest.hex()},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _fire_transition(account: EscrowAccount, event_name: str) -> EscrowStatus:
        """Validate via the lifecycle guard; raises InvalidStateTransitionError."""
        return EscrowStatus(EscrowLifecycle.validate_transition(account.status.value, event_name))

    def _release_split(self, account: EscrowAccount) -> dict:
        """The program's recorded fee when it has one, else the configured rate."""
        if account.fee_amount:
            seller_amount, fee_amount = account.amount - account.fee_amount, account.fee_amount
        else:
            seller_amount, fee_amount = fee_split(account.amount, self._fee_bps)
        return {"seller_amount": seller_amount, "fee_amount": fee_amount}

    @staticmethod
    def _same_terms(account: EscrowAccount, params: EscrowParams) -> bool:
        return (
            account.buyer == params.buyer
            and account.seller == params.seller
            and account.token_mint == params.token_mint
            and account.amount == params.amount
            and account.metadata_hash == params.metadata_hash
        )

    @staticmethod
    def _already_applied(
        account: EscrowAccount, instruction: str, details: dict | None = None
    ) -> TransactionResult:
        logger.info(
            "escrow.already_applied",
            escrow_id=account.escrow_id,
            instruction=instruction,
            status=account.status,
        )
        return TransactionResult(
            escrow_id=account.escrow_id,
            escrow_address=account.address,
            status=account.status,
            already_applied=True,
            details=details or {},
        )
