"""Solana adapter for the escrow program.

Treats the program as a black-box account store reached through five
instructions. Builds Anchor instructions with solders, signs them with the
service wallet and sends them through solana-py's async RPC client, waiting
for confirmation.

Error mapping:
    RPC transport failure, HTTP error, confirmation timeout -> ChainRpcError (retryable)
    simulation / program error returned by the node         -> ProgramRejectedError
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.models import TxOpts
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from aetherlock_oracle.domain.exceptions import (
    ChainRpcError,
    InvalidRequestError,
    ProgramRejectedError,
)
from aetherlock_oracle.infrastructure.escrow_layout import (
    decode_escrow_account,
    encode_instruction,
)
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from solana.rpc.async_api import AsyncClient
    from solders.keypair import Keypair

    from aetherlock_oracle.domain.models import EscrowAccount, ProgramInstruction

logger = get_logger(__name__)

ESCROW_SEED = b"escrow"
VAULT_SEED = b"vault"

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# Account metas per instruction: (role, is_signer, is_writable).
# Roles ending in "_token_account" are derived associated token accounts.
ACCOUNT_ROLES: dict[str, tuple[tuple[str, bool, bool], ...]] = {
    "initialize_escrow": (
        ("buyer", True, True),
        ("escrow", False, True),
        ("token_mint", False, False),
        ("system_program", False, False),
    ),
    "deposit_funds": (
        ("buyer", True, True),
        ("escrow", False, True),
        ("escrow_vault", False, True),
        ("buyer_token_account", False, True),
        ("token_mint", False, False),
        ("token_program", False, False),
        ("system_program", False, False),
    ),
    "submit_verification": (
        ("authority", True, False),
        ("escrow", False, True),
        ("ai_agent", False, False),
    ),
    "release_funds": (
        ("authority", True, True),
        ("escrow", False, True),
        ("escrow_vault", False, True),
        ("seller_token_account", False, True),
        ("treasury_token_account", False, True),
        ("token_program", False, False),
    ),
    "raise_dispute": (
        ("participant", True, False),
        ("escrow", False, True),
    ),
}

_TOKEN_ACCOUNT_OWNERS = {
    "buyer_token_account": "buyer",
    "seller_token_account": "seller",
    "treasury_token_account": "treasury",
}


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


class SolanaEscrowProgram:
    """EscrowProgram over a solana-py AsyncClient.

    Usage:
        async with AsyncClient(settings.solana_rpc_url) as rpc:
            program = SolanaEscrowProgram(rpc, settings.escrow_program_id, payer)
            account = await program.fetch_escrow(program.derive_escrow_address(escrow_id))
    """

    def __init__(
        self,
        client: AsyncClient,
        program_id: str,
        payer: Keypair,
        confirmation_timeout_seconds: float = 60.0,
    ) -> None:
        self._client = client
        self._program_id = Pubkey.from_string(program_id)
        self._payer = payer
        self._timeout = confirmation_timeout_seconds

    @property
    def payer_address(self) -> str:
        return str(self._payer.pubkey())

    def derive_escrow_address(self, escrow_id: bytes) -> str:
        address, _bump = Pubkey.find_program_address([ESCROW_SEED, escrow_id], self._program_id)
        return str(address)

    def derive_vault_address(self, escrow_address: str) -> str:
        address, _bump = Pubkey.find_program_address(
            [VAULT_SEED, bytes(Pubkey.from_string(escrow_address))], self._program_id
        )
        return str(address)

    async def fetch_escrow(self, escrow_address: str) -> EscrowAccount | None:
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.get_account_info(
                    Pubkey.from_string(escrow_address), commitment=Confirmed
                )
        except TimeoutError as exc:
            raise ChainRpcError(f"Timed out reading account {escrow_address}") from exc
        except (SolanaRpcException, httpx.HTTPError) as exc:
            raise ChainRpcError(f"RPC failure reading account {escrow_address}: {exc}") from exc

        account = response.value
        if account is None:
            return None
        if account.owner != self._program_id:
            raise InvalidRequestError(f"Account {escrow_address} is not owned by the escrow program")
        return decode_escrow_account(bytes(account.data), escrow_address)

    def build_instruction(self, instruction: ProgramInstruction) -> Instruction:
        """Resolve roles to account metas and encode the instruction data."""
        roles = ACCOUNT_ROLES.get(instruction.name)
        if roles is None:
            raise InvalidRequestError(f"Unknown escrow instruction: {instruction.name}")

        metas = []
        for role, is_signer, is_writable in roles:
            pubkey = self._resolve_role(instruction, role)
            if is_signer and pubkey != self._payer.pubkey():
                raise InvalidRequestError(
                    f"{instruction.name}: {role} {pubkey} must be the service wallet"
                )
            metas.append(AccountMeta(pubkey, is_signer, is_writable))

        data = encode_instruction(instruction.name, instruction.args)
        return Instruction(self._program_id, data, metas)

    def _resolve_role(self, instruction: ProgramInstruction, role: str) -> Pubkey:
        if role == "system_program":
            return SYSTEM_PROGRAM_ID
        if role == "token_program":
            return TOKEN_PROGRAM_ID
        if role in _TOKEN_ACCOUNT_OWNERS and role not in instruction.accounts:
            owner = Pubkey.from_string(instruction.accounts[_TOKEN_ACCOUNT_OWNERS[role]])
            mint = Pubkey.from_string(instruction.accounts["token_mint"])
            return associated_token_address(owner, mint)
        try:
            return Pubkey.from_string(instruction.accounts[role])
        except KeyError as err:
            raise InvalidRequestError(f"{instruction.name}: missing account '{role}'") from err

    async def send(self, instruction: ProgramInstruction) -> str:
        ix = self.build_instruction(instruction)
        try:
            async with asyncio.timeout(self._timeout):
                latest = await self._client.get_latest_blockhash(commitment=Confirmed)
                blockhash = latest.value.blockhash
                message = Message.new_with_blockhash([ix], self._payer.pubkey(), blockhash)
                tx = Transaction([self._payer], message, blockhash)
                response = await self._client.send_raw_transaction(
                    bytes(tx),
                    opts=TxOpts(skip_confirmation=False, preflight_commitment=Confirmed),
                )
        except RPCException as exc:
            logger.warning("chain.rejected", instruction=instruction.name, error=str(exc))
            raise ProgramRejectedError(instruction.name, str(exc)) from exc
        except UnconfirmedTxError as exc:
            raise ChainRpcError(f"{instruction.name} was not confirmed: {exc}") from exc
        except TimeoutError as exc:
            raise ChainRpcError(f"{instruction.name} confirmation timed out") from exc
        except (SolanaRpcException, httpx.HTTPError) as exc:
            raise ChainRpcError(f"RPC failure sending {instruction.name}: {exc}") from exc

        signature = str(response.value)
        logger.info(
            "chain.confirmed",
            instruction=instruction.name,
            escrow_id=instruction.escrow_id,
            signature=signature,
        )
        return signature
