"""Attestation Signer — Ed25519 attestations over adjudication verdicts.

The key is loaded once at process start (see ``load_signer``) and held for
the process lifetime. Signing is a pure function of the inputs plus the key:
Ed25519 is deterministic, so identical inputs yield identical signatures.

Message layout is a wire contract checked by the on-chain program:
    escrow_id[16] || result[1] || evidence_digest[32] || timestamp u64 BE[8]
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from aetherlock_oracle.domain.exceptions import MissingSigningKeyError
from aetherlock_oracle.domain.models import (
    Attestation,
    EvidenceManifest,
    Verdict,
    encode_attestation_message,
)
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from aetherlock_oracle.config import Settings

logger = get_logger(__name__)

KEY_TYPE = "Ed25519"
KEY_USAGE = "verification_signing"


class AttestationSigner:
    """Holds the AI-agent keypair and produces attestations."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @property
    def public_key(self) -> bytes:
        return bytes(self._keypair.pubkey())

    @property
    def public_key_base58(self) -> str:
        return str(self._keypair.pubkey())

    def key_info(self) -> dict:
        return {
            "public_key": self.public_key_base58,
            "public_key_hex": self.public_key.hex(),
            "key_type": KEY_TYPE,
            "usage": KEY_USAGE,
        }

    def sign(
        self, escrow_id: bytes, result: bool, evidence_digest: bytes, timestamp: int
    ) -> Attestation:
        message = encode_attestation_message(escrow_id, result, evidence_digest, timestamp)
        signature = self._keypair.sign_message(message)
        return Attestation(
            signature=bytes(signature),
            message=message,
            public_key=self.public_key,
        )

    def sign_verdict(
        self, escrow_id: bytes, verdict: Verdict, manifest: EvidenceManifest
    ) -> Attestation:
        """Attest a verdict over the manifest's binding digest at the verdict's timestamp."""
        return self.sign(escrow_id, verdict.result, manifest.digest, verdict.timestamp)


def verify_attestation(attestation: Attestation, public_key: bytes | None = None) -> bool:
    """Check an attestation's signature.

    Verifies against ``public_key`` when given, otherwise against the key
    embedded in the attestation. Malformed keys or signatures verify False.
    """
    key = public_key if public_key is not None else attestation.public_key
    try:
        pubkey = Pubkey.from_bytes(key)
        signature = Signature.from_bytes(attestation.signature)
    except ValueError:
        return False
    return signature.verify(pubkey, attestation.message)


# ---------------------------------------------------------------------------
# Key loading
# ---------------------------------------------------------------------------


def keypair_from_secret(secret: str) -> Keypair:
    """Parse a 64-byte keypair secret, base58 or a Solana CLI JSON array.

    Raises:
        MissingSigningKeyError: The secret is malformed.
    """
    secret = secret.strip()
    try:
        if secret.startswith("["):
            raw = bytes(json.loads(secret))
        else:
            # Signature parses exactly 64 base58-encoded bytes
            raw = bytes(Signature.from_string(secret))
        return Keypair.from_bytes(raw)
    except (ValueError, TypeError) as err:
        raise MissingSigningKeyError(f"Signing key is malformed: {err}") from err


def load_signer(settings: Settings) -> AttestationSigner:
    """Load the attestation key from the environment secret or a keypair file.

    Called once from the application lifespan; a missing or malformed key
    stops startup.

    Raises:
        MissingSigningKeyError: No key configured, unreadable file, bad key.
    """
    secret = settings.ai_agent_private_key.get_secret_value()
    if secret:
        source = "env"
    elif settings.ai_agent_keypair_path:
        path = Path(settings.ai_agent_keypair_path).expanduser()
        try:
            secret = path.read_text()
        except OSError as err:
            raise MissingSigningKeyError(f"Cannot read keypair file {path}: {err}") from err
        source = "file"
    else:
        raise MissingSigningKeyError(
            "No attestation key configured: set AI_AGENT_PRIVATE_KEY or AI_AGENT_KEYPAIR_PATH"
        )

    signer = AttestationSigner(keypair_from_secret(secret))
    logger.info("signer.loaded", source=source, public_key=signer.public_key_base58)
    return signer
