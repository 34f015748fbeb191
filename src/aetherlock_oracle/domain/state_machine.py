"""Lifecycle guards.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or the orchestrator asks for, an illegal
transition (e.g. FUNDED -> RELEASED) raises InvalidStateTransitionError.

Both escrow variants are instantiations of one lifecycle contract
(CREATED, FUNDED, VERIFIED, RELEASED, DISPUTED): each guard maps its own
states onto a LifecyclePhase.

Direct escrow (on-chain program), event names match instruction names:
    CREATED                -> FUNDED                  (deposit_funds)
    FUNDED                 -> VERIFICATION_SUBMITTED  (submit_verification)
    VERIFICATION_SUBMITTED -> RELEASED                (release_funds)
    VERIFICATION_SUBMITTED -> DISPUTED                (raise_dispute)
    DISPUTED               -> VERIFICATION_SUBMITTED  (resolve_dispute, admin)
    FUNDED | VERIFICATION_SUBMITTED | DISPUTED -> REFUNDED  (refund_buyer)

Cross-chain gateway record:
    CREATED                -> VERIFICATION_REQUESTED  (request_verification)
    VERIFICATION_REQUESTED -> VERIFIED                (verification_received)
    VERIFIED               -> RESOLVED                (resolve)

Verification pipeline run (strictly sequential, no branching back):
    IDLE -> EVIDENCE_UPLOADING -> ADJUDICATING -> SIGNING -> SUBMITTING -> DONE_SUCCESS
    any non-final stage -> DONE_FAILURE (fail)
"""

from __future__ import annotations

from typing import ClassVar

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from aetherlock_oracle.domain.enums import LifecyclePhase, PipelineStage
from aetherlock_oracle.domain.exceptions import InvalidStateTransitionError


class LifecycleGuard:
    """Behaviour shared by every lifecycle state machine.

    Usage:
        sm = EscrowLifecycle(current_status="FUNDED")
        sm.fire("submit_verification")
        sm.status  # "VERIFICATION_SUBMITTED"
    """

    PHASES: ClassVar[dict[str, LifecyclePhase]] = {}

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state_value)

    @property
    def is_final(self) -> bool:
        return any(state.final for state in self.states if state.value == self.status)

    @property
    def phase(self) -> LifecyclePhase | None:
        return self.PHASES.get(self.status)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        # Event.id is the identifier on 2.3+, older releases only carry .name
        return [str(getattr(event, "id", None) or event.name) for event in self.allowed_events]

    def fire(self, event_name: str) -> str:
        """Fire an event by name and return the new status.

        Raises:
            InvalidStateTransitionError: Unknown event or illegal from here.
        """
        current = self.status
        event_method = getattr(self, event_name, None)
        if event_method is None or not callable(event_method):
            raise InvalidStateTransitionError(current, event_name, "unknown event")
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(current, event_name) from err
        return self.status

    @classmethod
    def validate_transition(cls, current_status: str, event_name: str) -> str:
        """Check a transition without side effects and return the resulting status."""
        return cls(current_status=current_status).fire(event_name)


class EscrowLifecycle(LifecycleGuard, StateMachine):
    """Guards the on-chain escrow account lifecycle."""

    CREATED = State("CREATED", initial=True)
    FUNDED = State("FUNDED")
    VERIFICATION_SUBMITTED = State("VERIFICATION_SUBMITTED")
    DISPUTED = State("DISPUTED")
    RELEASED = State("RELEASED", final=True)
    REFUNDED = State("REFUNDED", final=True)

    deposit_funds = CREATED.to(FUNDED)
    submit_verification = FUNDED.to(VERIFICATION_SUBMITTED)
    release_funds = VERIFICATION_SUBMITTED.to(RELEASED)
    raise_dispute = VERIFICATION_SUBMITTED.to(DISPUTED)
    resolve_dispute = DISPUTED.to(VERIFICATION_SUBMITTED)
    refund_buyer = (
        FUNDED.to(REFUNDED) | VERIFICATION_SUBMITTED.to(REFUNDED) | DISPUTED.to(REFUNDED)
    )

    PHASES: ClassVar[dict[str, LifecyclePhase]] = {
        "CREATED": LifecyclePhase.CREATED,
        "FUNDED": LifecyclePhase.FUNDED,
        "VERIFICATION_SUBMITTED": LifecyclePhase.VERIFIED,
        "DISPUTED": LifecyclePhase.DISPUTED,
        "RELEASED": LifecyclePhase.RELEASED,
    }


class GatewayLifecycle(LifecycleGuard, StateMachine):
    """Guards a gateway-side escrow record driven by oracle-network callbacks."""

    CREATED = State("CREATED", initial=True)
    VERIFICATION_REQUESTED = State("VERIFICATION_REQUESTED")
    VERIFIED = State("VERIFIED")
    RESOLVED = State("RESOLVED", final=True)

    request_verification = CREATED.to(VERIFICATION_REQUESTED)
    verification_received = VERIFICATION_REQUESTED.to(VERIFIED)
    resolve = VERIFIED.to(RESOLVED)

    PHASES: ClassVar[dict[str, LifecyclePhase]] = {
        "CREATED": LifecyclePhase.CREATED,
        "VERIFICATION_REQUESTED": LifecyclePhase.FUNDED,
        "VERIFIED": LifecyclePhase.VERIFIED,
        "RESOLVED": LifecyclePhase.RELEASED,
    }


class PipelineLifecycle(LifecycleGuard, StateMachine):
    """Tracks the stage of one verification run."""

    IDLE = State("IDLE", initial=True)
    EVIDENCE_UPLOADING = State("EVIDENCE_UPLOADING")
    ADJUDICATING = State("ADJUDICATING")
    SIGNING = State("SIGNING")
    SUBMITTING = State("SUBMITTING")
    DONE_SUCCESS = State("DONE_SUCCESS", final=True)
    DONE_FAILURE = State("DONE_FAILURE", final=True)

    start = IDLE.to(EVIDENCE_UPLOADING)
    evidence_uploaded = EVIDENCE_UPLOADING.to(ADJUDICATING)
    adjudicated = ADJUDICATING.to(SIGNING)
    signed = SIGNING.to(SUBMITTING)
    submitted = SUBMITTING.to(DONE_SUCCESS)
    fail = (
        IDLE.to(DONE_FAILURE)
        | EVIDENCE_UPLOADING.to(DONE_FAILURE)
        | ADJUDICATING.to(DONE_FAILURE)
        | SIGNING.to(DONE_FAILURE)
        | SUBMITTING.to(DONE_FAILURE)
    )

    _CANCELLABLE: ClassVar[frozenset[str]] = frozenset(
        {
            PipelineStage.IDLE,
            PipelineStage.EVIDENCE_UPLOADING,
            PipelineStage.ADJUDICATING,
            PipelineStage.SIGNING,
        }
    )

    def __init__(self, current_status: str = "IDLE") -> None:
        super().__init__(current_status=current_status)

    @property
    def stage(self) -> PipelineStage:
        return PipelineStage(self.status)

    @property
    def cancellable(self) -> bool:
        return self.status in self._CANCELLABLE
