"""Wire layout of the on-chain escrow program (Anchor conventions).

Instruction data:  sha256("global:<name>")[:8] || Borsh-encoded args
Account data:      sha256("account:EscrowAccount")[:8] || Borsh-encoded fields

Borsh: little-endian integers, ``bool`` as one byte, ``Option<T>`` as a 0/1
tag followed by T when present, fixed arrays raw. Pubkeys are 32 raw bytes
on the wire and base58 strings in Python.
"""

from __future__ import annotations

import hashlib
import struct
from collections.abc import Callable
from typing import Any

from solders.pubkey import Pubkey

from aetherlock_oracle.domain.enums import EscrowStatus
from aetherlock_oracle.domain.exceptions import AetherLockError
from aetherlock_oracle.domain.models import EscrowAccount

# On-chain enum order; the index is the stored byte.
STATUS_ORDER: tuple[EscrowStatus, ...] = (
    EscrowStatus.CREATED,
    EscrowStatus.FUNDED,
    EscrowStatus.VERIFICATION_SUBMITTED,
    EscrowStatus.DISPUTED,
    EscrowStatus.RELEASED,
    EscrowStatus.REFUNDED,
)

# (arg name, borsh kind) per instruction, in wire order.
INSTRUCTION_ARGS: dict[str, tuple[tuple[str, str], ...]] = {
    "initialize_escrow": (
        ("escrow_id", "bytes16"),
        ("seller", "pubkey"),
        ("amount", "u64"),
        ("expiry", "i64"),
        ("metadata_hash", "bytes32"),
        ("ai_agent_pubkey", "pubkey"),
    ),
    "deposit_funds": (),
    "submit_verification": (
        ("result", "bool"),
        ("evidence_hash", "bytes32"),
        ("timestamp", "i64"),
        ("signature", "bytes64"),
    ),
    "release_funds": (),
    "raise_dispute": (("reason_hash", "bytes32"),),
}


class AccountLayoutError(AetherLockError):
    """Raised when account data does not decode as an escrow account."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="ACCOUNT_LAYOUT_ERROR")


def discriminator(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


ESCROW_ACCOUNT_DISCRIMINATOR = discriminator("account", "EscrowAccount")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _fixed(length: int) -> Callable[[Any], bytes]:
    def encode(value: Any) -> bytes:
        raw = bytes(value)
        if len(raw) != length:
            raise ValueError(f"expected {length} bytes, got {len(raw)}")
        return raw

    return encode


_ENCODERS: dict[str, Callable[[Any], bytes]] = {
    "bool": lambda v: struct.pack("<?", bool(v)),
    "u8": lambda v: struct.pack("<B", v),
    "u64": lambda v: struct.pack("<Q", v),
    "i64": lambda v: struct.pack("<q", v),
    "bytes16": _fixed(16),
    "bytes32": _fixed(32),
    "bytes64": _fixed(64),
    "pubkey": lambda v: bytes(Pubkey.from_string(v) if isinstance(v, str) else v),
}


def _encode_option(kind: str, value: Any) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + _ENCODERS[kind](value)


def encode_instruction(name: str, args: dict[str, Any]) -> bytes:
    """Anchor instruction data for ``name``.

    Raises:
        KeyError: Unknown instruction or missing argument.
    """
    layout = INSTRUCTION_ARGS[name]
    parts = [discriminator("global", name)]
    parts.extend(_ENCODERS[kind](args[arg]) for arg, kind in layout)
    return b"".join(parts)


def encode_escrow_account(account: EscrowAccount) -> bytes:
    """Serialize an account the way the program stores it."""
    return b"".join(
        [
            ESCROW_ACCOUNT_DISCRIMINATOR,
            _ENCODERS["bytes16"](bytes.fromhex(account.escrow_id)),
            _ENCODERS["pubkey"](account.buyer),
            _ENCODERS["pubkey"](account.seller),
            _ENCODERS["pubkey"](account.token_mint),
            _ENCODERS["u64"](account.amount),
            _ENCODERS["u64"](account.fee_amount),
            _ENCODERS["u8"](STATUS_ORDER.index(account.status)),
            _ENCODERS["i64"](account.expiry),
            _ENCODERS["bytes32"](account.metadata_hash),
            _encode_option("bool", account.verification_result),
            _encode_option("bytes32", account.evidence_hash),
            _encode_option("i64", account.verification_timestamp),
            _ENCODERS["bool"](account.dispute_raised),
            _encode_option("i64", account.dispute_deadline),
            _ENCODERS["pubkey"](account.ai_agent_pubkey),
            _ENCODERS["u8"](account.bump),
        ]
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def take(self, length: int) -> bytes:
        end = self._offset + length
        if end > len(self._data):
            raise AccountLayoutError(
                f"Account data truncated at offset {self._offset} (size {len(self._data)})"
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def unpack(self, fmt: str) -> Any:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))[0]

    def pubkey(self) -> str:
        return str(Pubkey.from_bytes(self.take(32)))

    def option(self, read: Callable[[], Any]) -> Any:
        tag = self.unpack("<B")
        if tag == 0:
            return None
        if tag != 1:
            raise AccountLayoutError(f"Invalid Option tag {tag}")
        return read()


def decode_escrow_account(data: bytes, address: str) -> EscrowAccount:
    """Decode raw account data fetched from ``address``.

    Raises:
        AccountLayoutError: Wrong discriminator, truncated data, bad enum byte.
    """
    reader = _Reader(data)
    if reader.take(8) != ESCROW_ACCOUNT_DISCRIMINATOR:
        raise AccountLayoutError(f"Account {address} is not an escrow account")

    escrow_id = reader.take(16).hex()
    buyer = reader.pubkey()
    seller = reader.pubkey()
    token_mint = reader.pubkey()
    amount = reader.unpack("<Q")
    fee_amount = reader.unpack("<Q")
    status_byte = reader.unpack("<B")
    if status_byte >= len(STATUS_ORDER):
        raise AccountLayoutError(f"Unknown escrow status byte {status_byte}")
    expiry = reader.unpack("<q")
    metadata_hash = reader.take(32)
    verification_result = reader.option(lambda: reader.unpack("<?"))
    evidence_hash = reader.option(lambda: reader.take(32))
    verification_timestamp = reader.option(lambda: reader.unpack("<q"))
    dispute_raised = reader.unpack("<?")
    dispute_deadline = reader.option(lambda: reader.unpack("<q"))
    ai_agent_pubkey = reader.pubkey()
    bump = reader.unpack("<B")

    return EscrowAccount(
        escrow_id=escrow_id,
        address=address,
        buyer=buyer,
        seller=seller,
        token_mint=token_mint,
        amount=amount,
        fee_amount=fee_amount,
        status=STATUS_ORDER[status_byte],
        expiry=expiry,
        metadata_hash=metadata_hash,
        ai_agent_pubkey=ai_agent_pubkey,
        verification_result=verification_result,
        evidence_hash=evidence_hash,
        verification_timestamp=verification_timestamp,
        dispute_raised=dispute_raised,
        dispute_deadline=dispute_deadline,
        bump=bump,
    )
