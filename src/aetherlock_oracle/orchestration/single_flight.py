"""In-process single-flight lease keyed by escrow id.

Default FlightGuard for a single service replica. Acquire and release never
await, so the check-and-set is atomic on the event loop. Use
RedisFlightGuard (infrastructure/redis_client.py) when several replicas
serve the same escrows.
"""

from __future__ import annotations

import uuid

from aetherlock_oracle.logging_config import get_logger

logger = get_logger(__name__)


class LocalFlightGuard:
    """Lease registry held in process memory."""

    def __init__(self) -> None:
        self._held: dict[str, str] = {}

    def is_held(self, key: str) -> bool:
        return key in self._held

    async def acquire(self, key: str) -> str | None:
        if key in self._held:
            logger.info("single_flight.busy", escrow_id=key, backend="local")
            return None
        token = uuid.uuid4().hex
        self._held[key] = token
        return token

    async def release(self, key: str, token: str) -> None:
        if self._held.get(key) == token:
            del self._held[key]
