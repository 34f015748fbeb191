"""Evidence Store — takes custody of delivered work and anchors it.

Validates an evidence bundle at the ingestion boundary (before any network
call), pins it to content-addressed storage through a ContentStore, and
returns an immutable EvidenceManifest carrying the content identifier and
the SHA-256 binding digest the attestation will commit to.

File bytes live only for the duration of the call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from aetherlock_oracle.domain.exceptions import InvalidFileError, PayloadTooLargeError
from aetherlock_oracle.domain.models import (
    EvidenceEntry,
    EvidenceManifest,
    evidence_digest,
)
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from aetherlock_oracle.config import Settings
    from aetherlock_oracle.domain.models import EvidenceFile
    from aetherlock_oracle.domain.protocols import ContentStore

logger = get_logger(__name__)

DEFAULT_MAX_TOTAL_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_FILES = 10


class EvidenceStore:
    """Uploads evidence bundles and produces their manifests."""

    def __init__(
        self,
        content_store: ContentStore,
        max_total_bytes: int = DEFAULT_MAX_TOTAL_BYTES,
        max_files: int = DEFAULT_MAX_FILES,
    ) -> None:
        self._content_store = content_store
        self._max_total_bytes = max_total_bytes
        self._max_files = max_files

    @classmethod
    def from_settings(cls, content_store: ContentStore, settings: Settings) -> EvidenceStore:
        return cls(
            content_store,
            max_total_bytes=settings.evidence_max_total_bytes,
            max_files=settings.evidence_max_files,
        )

    def validate(self, files: Sequence[EvidenceFile]) -> int:
        """Check the bundle and return its aggregate size.

        Raises:
            InvalidFileError: No files, too many files, an unnamed, empty,
                duplicated or mis-sized file.
            PayloadTooLargeError: Aggregate size above the ceiling.
        """
        if not files:
            raise InvalidFileError("No evidence files provided")
        if len(files) > self._max_files:
            raise InvalidFileError(
                f"Too many evidence files: {len(files)} (maximum {self._max_files})"
            )

        seen: set[str] = set()
        total = 0
        for f in files:
            name = f.name.strip() if f.name else ""
            if not name:
                raise InvalidFileError("Evidence file has no name")
            if "/" in name or "\\" in name:
                raise InvalidFileError("Evidence file name must not contain a path", name)
            if name in seen:
                raise InvalidFileError(f"Duplicate evidence file name: {name}", name)
            if f.size == 0:
                raise InvalidFileError(f"Evidence file is empty: {name}", name)
            if f.declared_size is not None and f.declared_size != f.size:
                raise InvalidFileError(
                    f"Declared size {f.declared_size} does not match payload size {f.size}: {name}",
                    name,
                )
            seen.add(name)
            total += f.size

        if total > self._max_total_bytes:
            raise PayloadTooLargeError(total, self._max_total_bytes)
        return total

    async def upload(self, files: Sequence[EvidenceFile], escrow_id: str = "") -> EvidenceManifest:
        """Validate, pin and digest one evidence bundle.

        Raises:
            InvalidFileError / PayloadTooLargeError: Bad input; do not retry.
            StorageUnavailableError: Storage outage; safe to retry.
        """
        total = self.validate(files)
        label = f"aetherlock-evidence-{escrow_id}" if escrow_id else "aetherlock-evidence"

        content_id = await self._content_store.pin(files, label=label)

        manifest = EvidenceManifest(
            entries=tuple(EvidenceEntry(f.name.strip(), f.mime_type, f.size) for f in files),
            content_id=content_id,
            digest=evidence_digest(content_id),
            gateway_url=self._content_store.gateway_url(content_id),
        )
        logger.info(
            "evidence.uploaded",
            escrow_id=escrow_id,
            cid=content_id,
            files=len(files),
            total_bytes=total,
        )
        return manifest
