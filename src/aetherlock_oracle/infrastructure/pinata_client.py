"""Pinata pinning client — content-addressed evidence storage on IPFS.

Uploads an evidence bundle as one directory (every file under a common
``evidence/`` root) and requests CIDv1, so byte-identical bundles always
yield the same content identifier.

Usage:
    async with httpx.AsyncClient() as http:
        store = PinataContentStore(http, jwt=settings.pinata_jwt.get_secret_value())
        cid = await store.pin(files, label="aetherlock-evidence-9f1c...")
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx

from aetherlock_oracle.domain.exceptions import (
    InvalidFileError,
    PayloadTooLargeError,
    StorageUnavailableError,
)
from aetherlock_oracle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from aetherlock_oracle.config import Settings
    from aetherlock_oracle.domain.models import EvidenceFile

logger = get_logger(__name__)

BUNDLE_ROOT = "evidence"

# Request timeout and rate limiting; every other 4xx is a property of the input
_TRANSIENT_CLIENT_STATUSES = frozenset({408, 429})


class PinataContentStore:
    """ContentStore backed by the Pinata pinning API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        jwt: str,
        gateway: str = "gateway.pinata.cloud",
        api_url: str = "https://api.pinata.cloud",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._http = http_client
        self._jwt = jwt
        self._gateway = gateway
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient, settings: Settings) -> PinataContentStore:
        return cls(
            http_client,
            jwt=settings.pinata_jwt.get_secret_value(),
            gateway=settings.ipfs_gateway,
            api_url=settings.pinata_api_url,
            timeout_seconds=settings.evidence_upload_timeout_seconds,
        )

    def gateway_url(self, content_id: str) -> str:
        return f"https://{self._gateway}/ipfs/{content_id}"

    async def pin(self, files: Sequence[EvidenceFile], label: str) -> str:
        """Pin the bundle and return its CID.

        Raises:
            PayloadTooLargeError: HTTP 413.
            InvalidFileError: Any other 4xx except 408 and 429.
            StorageUnavailableError: Timeout, transport failure, 5xx, 408, 429
                or a reply without an IpfsHash.
        """
        multipart = [
            ("file", (f"{BUNDLE_ROOT}/{f.name}", f.content, f.mime_type or "application/octet-stream"))
            for f in files
        ]
        form = {
            "pinataMetadata": json.dumps(
                {"name": label, "keyvalues": {"type": "evidence", "files": len(files)}}
            ),
            "pinataOptions": json.dumps({"cidVersion": 1}),
        }

        try:
            response = await self._http.post(
                f"{self._api_url}/pinning/pinFileToIPFS",
                headers={"Authorization": f"Bearer {self._jwt}"},
                files=multipart,
                data=form,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("pinata.timeout", label=label, error=str(exc))
            raise StorageUnavailableError(f"Evidence upload timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("pinata.transport_error", label=label, error=str(exc))
            raise StorageUnavailableError(f"Evidence upload failed: {exc}") from exc

        status = response.status_code
        if status >= 400:
            logger.warning("pinata.http_error", label=label, status=status)
            if status == 413:
                raise PayloadTooLargeError(sum(len(f.content) for f in files))
            if status < 500 and status not in _TRANSIENT_CLIENT_STATUSES:
                raise InvalidFileError(f"Pinning service refused the bundle: HTTP {status}")
            raise StorageUnavailableError(
                f"Pinning service returned HTTP {status}",
                status_code=status,
            )

        try:
            content_id = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageUnavailableError("Invalid response from pinning service") from exc

        if not content_id:
            raise StorageUnavailableError("Pinning service returned an empty content identifier")

        logger.info("pinata.pinned", label=label, cid=content_id)
        return str(content_id)
