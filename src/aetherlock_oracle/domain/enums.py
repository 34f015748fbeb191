"""Domain enumerations for the AetherLock verification oracle.

These enums define the canonical states used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """On-chain lifecycle states of an escrow account.

    The declaration order is the Borsh discriminant order of the on-chain
    status byte; see infrastructure/escrow_layout.py.
    """

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    VERIFICATION_SUBMITTED = "VERIFICATION_SUBMITTED"
    DISPUTED = "DISPUTED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class GatewayStatus(enum.StrEnum):
    """Lifecycle states of a gateway-side (cross-chain) escrow record."""

    CREATED = "CREATED"
    VERIFICATION_REQUESTED = "VERIFICATION_REQUESTED"
    VERIFIED = "VERIFIED"
    RESOLVED = "RESOLVED"


class LifecyclePhase(enum.StrEnum):
    """The shared escrow-lifecycle contract both variants map onto."""

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    VERIFIED = "VERIFIED"
    RELEASED = "RELEASED"
    DISPUTED = "DISPUTED"


class PipelineStage(enum.StrEnum):
    """Stages of one verification pipeline run, in execution order."""

    IDLE = "IDLE"
    EVIDENCE_UPLOADING = "EVIDENCE_UPLOADING"
    ADJUDICATING = "ADJUDICATING"
    SIGNING = "SIGNING"
    SUBMITTING = "SUBMITTING"
    DONE_SUCCESS = "DONE_SUCCESS"
    DONE_FAILURE = "DONE_FAILURE"


class GatewayEventType(enum.StrEnum):
    """Types of audit events recorded in the gateway_events table.

    Every gateway transition produces exactly one event; duplicate
    callbacks produce none.
    """

    RECORD_CREATED = "RECORD_CREATED"
    VERIFICATION_REQUESTED = "VERIFICATION_REQUESTED"
    VERIFICATION_RECEIVED = "VERIFICATION_RECEIVED"
    RECORD_RESOLVED = "RECORD_RESOLVED"


class GatewayOutcome(enum.StrEnum):
    RELEASED = "released"
    REFUNDED = "refunded"
