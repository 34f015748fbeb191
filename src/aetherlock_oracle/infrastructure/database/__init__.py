"""Database infrastructure — engine, ORM models, and repositories for gateway records."""

from aetherlock_oracle.infrastructure.database.engine import GatewayDatabase
from aetherlock_oracle.infrastructure.database.orm_models import (
    Base,
    GatewayEscrow,
    GatewayEvent,
)
from aetherlock_oracle.infrastructure.database.repositories import (
    GatewayEventRepository,
    GatewayRepository,
)

__all__ = [
    "Base",
    "GatewayDatabase",
    "GatewayEscrow",
    "GatewayEvent",
    "GatewayEventRepository",
    "GatewayRepository",
]
