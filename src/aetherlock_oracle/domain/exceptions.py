"""Domain exceptions for the AetherLock verification oracle.

These exceptions are framework-agnostic and fall into four families:

    input errors      — surfaced immediately, never retried
    transient errors  — ``retryable = True``; the orchestrator retries them
    integrity errors  — fatal to one submission attempt, never retried with
                        the same attestation
    pipeline errors   — the structured outcome handed back to callers

They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations


class AetherLockError(Exception):
    """Base exception for all domain errors."""

    retryable: bool = False

    def __init__(self, message: str, code: str = "AETHERLOCK_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class InvalidRequestError(AetherLockError):
    """Raised for malformed identifiers or arguments."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_REQUEST")


# --- Evidence Errors ---


class StorageUnavailableError(AetherLockError):
    """Raised when the content-addressed store cannot be reached."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="STORAGE_UNAVAILABLE")
        self.status_code = status_code


class PayloadTooLargeError(AetherLockError):
    """Raised when the evidence bundle exceeds the aggregate size ceiling."""

    def __init__(self, total_bytes: int, limit_bytes: int | None = None) -> None:
        if limit_bytes is None:
            message = f"Evidence bundle of {total_bytes} bytes was refused as too large by the store"
        else:
            message = f"Evidence bundle is {total_bytes} bytes, limit is {limit_bytes} bytes"
        super().__init__(message=message, code="PAYLOAD_TOO_LARGE")
        self.total_bytes = total_bytes
        self.limit_bytes = limit_bytes


class InvalidFileError(AetherLockError):
    """Raised when an evidence file is unnamed, empty or mis-sized."""

    def __init__(self, message: str, file_name: str = "") -> None:
        super().__init__(message=message, code="INVALID_FILE")
        self.file_name = file_name


# --- Adjudication Errors ---


class AdjudicationServiceError(AetherLockError):
    """Raised when the AI judgment service fails or times out."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="ADJUDICATION_SERVICE_ERROR")


class MalformedResponseError(AetherLockError):
    """Raised when the judgment reply carries none of the expected fields.

    The Adjudicator converts this into a failing verdict; it never leaves
    the adjudication layer.
    """

    def __init__(self, raw_response: str) -> None:
        super().__init__(
            message="Adjudicator reply could not be parsed",
            code="MALFORMED_RESPONSE",
        )
        self.raw_response = raw_response


# --- Signing Errors ---


class MissingSigningKeyError(AetherLockError):
    """Raised at startup when the attestation key is absent or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="MISSING_SIGNING_KEY")


# --- Escrow / Chain Errors ---


class EscrowNotFoundError(AetherLockError):
    """Raised when no escrow account exists for an escrow id."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow not found: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


class InvalidStateTransitionError(AetherLockError):
    """Raised when the current status does not allow an operation.

    Example: release_funds on a FUNDED escrow (no verification yet).
    """

    def __init__(self, current_state: str, attempted: str, reason: str = "") -> None:
        message = f"Invalid state transition: {current_state} -> {attempted}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_STATE_TRANSITION")
        self.current_state = current_state
        self.attempted_state = attempted


class UnauthorizedPartyError(AetherLockError):
    """Raised when a caller is neither the buyer nor the seller of an escrow."""

    def __init__(self, escrow_id: str, caller: str) -> None:
        super().__init__(
            message=f"{caller} is not a party to escrow {escrow_id}",
            code="UNAUTHORIZED_PARTY",
        )


class ChainRpcError(AetherLockError):
    """Raised when the RPC node is unreachable or confirmation times out."""

    retryable = True

    def __init__(self, message: str, signature: str | None = None) -> None:
        super().__init__(message=message, code="CHAIN_RPC_ERROR")
        self.signature = signature


class ProgramRejectedError(AetherLockError):
    """Raised when the on-chain program refuses an instruction.

    Covers signature verification failure and on-chain precondition
    mismatch. A new adjudication run is required; resubmitting the same
    attestation will not succeed.
    """

    def __init__(self, instruction: str, message: str) -> None:
        super().__init__(
            message=f"Program rejected {instruction}: {message}",
            code="PROGRAM_REJECTED",
        )
        self.instruction = instruction


# --- Pipeline Errors ---


class VerificationInProgressError(AetherLockError):
    """Raised when a verification run is already in flight for an escrow."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Verification already in progress for escrow {escrow_id}",
            code="VERIFICATION_IN_PROGRESS",
        )
        self.escrow_id = escrow_id


class NotCancellableError(AetherLockError):
    """Raised when cancelling a run that has already reached on-chain submission."""

    def __init__(self, escrow_id: str, stage: str) -> None:
        super().__init__(
            message=f"Verification for escrow {escrow_id} cannot be cancelled at {stage}",
            code="NOT_CANCELLABLE",
        )
        self.stage = stage


class PipelineCancelledError(AetherLockError):
    """Cause attached to a run that was cancelled before submission."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Verification for escrow {escrow_id} was cancelled",
            code="PIPELINE_CANCELLED",
        )


class VerificationFailedError(AetherLockError):
    """Terminal pipeline failure naming the stage and the underlying cause."""

    def __init__(self, escrow_id: str, stage: str, cause: AetherLockError) -> None:
        super().__init__(
            message=f"Verification failed at {stage}: {cause.message}",
            code="VERIFICATION_FAILED",
        )
        self.escrow_id = escrow_id
        self.stage = stage
        self.cause = cause


# --- Gateway Errors ---


class UnknownEscrowError(AetherLockError):
    """Raised when a gateway callback references an unregistered escrow."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Unknown gateway escrow: {escrow_id}",
            code="UNKNOWN_ESCROW",
        )
        self.escrow_id = escrow_id
