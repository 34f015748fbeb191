"""Domain layer — pure business logic with zero framework dependencies."""

from aetherlock_oracle.domain.enums import (
    EscrowStatus,
    GatewayEventType,
    GatewayOutcome,
    GatewayStatus,
    LifecyclePhase,
    PipelineStage,
)
from aetherlock_oracle.domain.exceptions import (
    AetherLockError,
    EscrowNotFoundError,
    InvalidStateTransitionError,
    UnknownEscrowError,
    VerificationFailedError,
)
from aetherlock_oracle.domain.models import (
    Attestation,
    EscrowAccount,
    EscrowParams,
    EvidenceFile,
    EvidenceManifest,
    TransactionResult,
    Verdict,
    VerificationRecord,
)
from aetherlock_oracle.domain.state_machine import (
    EscrowLifecycle,
    GatewayLifecycle,
    PipelineLifecycle,
)

__all__ = [
    "EscrowStatus",
    "GatewayEventType",
    "GatewayOutcome",
    "GatewayStatus",
    "LifecyclePhase",
    "PipelineStage",
    "AetherLockError",
    "EscrowNotFoundError",
    "InvalidStateTransitionError",
    "UnknownEscrowError",
    "VerificationFailedError",
    "Attestation",
    "EscrowAccount",
    "EscrowParams",
    "EvidenceFile",
    "EvidenceManifest",
    "TransactionResult",
    "Verdict",
    "VerificationRecord",
    "EscrowLifecycle",
    "GatewayLifecycle",
    "PipelineLifecycle",
]
