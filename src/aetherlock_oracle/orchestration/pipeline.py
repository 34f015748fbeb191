"""Verification Orchestrator — the evidence -> verdict -> attestation -> chain pipeline.

One run per escrow at a time:

    IDLE -> EVIDENCE_UPLOADING -> ADJUDICATING -> SIGNING -> SUBMITTING -> DONE_SUCCESS
                                         any stage -> DONE_FAILURE

Responsibilities:
    - Single-flight: a second request for an escrow with a run in flight is
      rejected with VerificationInProgressError. The lease is held for the
      whole run and released on success, failure or cancellation.
    - Pre-flight: the escrow's on-chain status is read before any upload;
      only a FUNDED escrow can be verified.
    - Retries: this is the only place that retries. Errors flagged
      ``retryable`` are retried per stage with bounded exponential backoff
      (tenacity); everything else fails the run immediately.
    - Outcome: the caller gets a VerificationRecord or a
      VerificationFailedError naming the stage and the cause. Nothing is
      persisted here; the chain and the content store are the systems of record.
    - Cancellation: allowed until the run reaches SUBMITTING. If the caller
      itself is cancelled once a submission is under way, the send runs to
      completion and the lease is held until it does.
    - Keys: runs are keyed by the normalized escrow id (lowercase hex).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from aetherlock_oracle.domain.enums import EscrowStatus, PipelineStage
from aetherlock_oracle.domain.exceptions import (
    AetherLockError,
    InvalidStateTransitionError,
    NotCancellableError,
    PipelineCancelledError,
    VerificationFailedError,
    VerificationInProgressError,
)
from aetherlock_oracle.domain.models import VerificationRecord, parse_escrow_id
from aetherlock_oracle.domain.state_machine import PipelineLifecycle
from aetherlock_oracle.logging_config import (
    bind_pipeline_context,
    clear_pipeline_context,
    get_logger,
)
from aetherlock_oracle.orchestration.single_flight import LocalFlightGuard

if TYPE_CHECKING:
    from aetherlock_oracle.config import Settings
    from aetherlock_oracle.domain.models import EvidenceFile
    from aetherlock_oracle.domain.protocols import (
        AttestationProvider,
        EvidenceUploader,
        FlightGuard,
        VerdictProvider,
    )
    from aetherlock_oracle.services.escrow_client import EscrowClient

logger = get_logger(__name__)

T = TypeVar("T")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AetherLockError) and exc.retryable


@dataclass
class PipelineRun:
    """In-flight state of one verification run (process memory only)."""

    escrow_id: str
    lifecycle: PipelineLifecycle = field(default_factory=PipelineLifecycle)
    started_at: float = field(default_factory=time.time)
    attempts: dict[str, int] = field(default_factory=dict)
    task: asyncio.Task | None = None
    cancel_requested: bool = False

    @property
    def stage(self) -> PipelineStage:
        return self.lifecycle.stage

    def to_dict(self) -> dict:
        return {
            "escrow_id": self.escrow_id,
            "stage": self.stage.value,
            "cancellable": self.lifecycle.cancellable,
            "cancel_requested": self.cancel_requested,
            "started_at": int(self.started_at),
            "attempts": dict(self.attempts),
        }


class VerificationOrchestrator:
    """Sequences EvidenceStore -> Adjudicator -> AttestationSigner -> EscrowClient."""

    def __init__(
        self,
        evidence_store: EvidenceUploader,
        adjudicator: VerdictProvider,
        signer: AttestationProvider,
        escrow_client: EscrowClient,
        flight_guard: FlightGuard | None = None,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
    ) -> None:
        self._evidence = evidence_store
        self._adjudicator = adjudicator
        self._signer = signer
        self._escrow = escrow_client
        self._guard = flight_guard or LocalFlightGuard()
        self._max_attempts = max_attempts
        self._retry_base = retry_base_seconds
        self._retry_max = retry_max_seconds
        self._runs: dict[str, PipelineRun] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        evidence_store: EvidenceUploader,
        adjudicator: VerdictProvider,
        signer: AttestationProvider,
        escrow_client: EscrowClient,
        flight_guard: FlightGuard | None = None,
    ) -> VerificationOrchestrator:
        return cls(
            evidence_store,
            adjudicator,
            signer,
            escrow_client,
            flight_guard=flight_guard,
            max_attempts=settings.pipeline_max_attempts,
            retry_base_seconds=settings.pipeline_retry_base_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        escrow_id: str,
        task_description: str,
        files: Sequence[EvidenceFile],
    ) -> VerificationRecord:
        """Run the full pipeline for one escrow.

        Raises:
            InvalidRequestError: Malformed escrow id.
            VerificationInProgressError: A run is already in flight for the escrow.
            VerificationFailedError: Any stage failed; carries stage and cause.
        """
        escrow_bytes = parse_escrow_id(escrow_id)
        escrow_id = escrow_bytes.hex()

        token = await self._guard.acquire(escrow_id)
        if token is None:
            raise VerificationInProgressError(escrow_id)

        run = PipelineRun(escrow_id=escrow_id)
        self._runs[escrow_id] = run
        bind_pipeline_context(escrow_id, run.stage.value)
        logger.info("pipeline.started", files=len(files))
        try:
            run.task = asyncio.create_task(
                self._execute(run, escrow_bytes, task_description, files)
            )
            try:
                return await asyncio.shield(run.task)
            except asyncio.CancelledError:
                if run.task.cancelled() and run.cancel_requested:
                    raise self._fail(run, PipelineCancelledError(escrow_id)) from None
                await self._abandon(run)
                raise
        finally:
            self._runs.pop(escrow_id, None)
            await self._guard.release(escrow_id, token)
            clear_pipeline_context()

    async def _abandon(self, run: PipelineRun) -> None:
        """The caller was cancelled. Stop the run before SUBMITTING, else let the send finish.

        Returns once the run's task is done, so the lease outlives any
        in-flight chain submission.
        """
        task = run.task
        if run.lifecycle.cancellable:
            task.cancel()
        else:
            logger.warning("pipeline.caller_gone_during_submission", stage=run.stage)
        while not task.done():
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                continue
        if not task.cancelled() and task.exception() is None:
            logger.info("pipeline.completed_without_caller", signature=task.result().transaction.signature)

    def status(self, escrow_id: str) -> PipelineRun | None:
        """The in-flight run for an escrow, if any."""
        return self._runs.get(parse_escrow_id(escrow_id).hex())

    def cancel(self, escrow_id: str) -> PipelineRun:
        """Cancel an in-flight run. Its caller receives VerificationFailedError.

        Raises:
            NotCancellableError: No run in flight, or it already reached SUBMITTING.
        """
        escrow_id = parse_escrow_id(escrow_id).hex()
        run = self._runs.get(escrow_id)
        if run is None:
            raise NotCancellableError(escrow_id, "no run in flight")
        if not run.lifecycle.cancellable:
            raise NotCancellableError(escrow_id, run.stage.value)

        run.cancel_requested = True
        if run.task is not None:
            run.task.cancel()
        logger.info("pipeline.cancel_requested", escrow_id=escrow_id, stage=run.stage)
        return run

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(
        self,
        run: PipelineRun,
        escrow_bytes: bytes,
        task_description: str,
        files: Sequence[EvidenceFile],
    ) -> VerificationRecord:
        escrow_id = run.escrow_id
        try:
            account = await self._stage(run, lambda: self._escrow.get_escrow(escrow_id))
            if account.status != EscrowStatus.FUNDED:
                raise self._fail(
                    run,
                    InvalidStateTransitionError(
                        account.status, EscrowStatus.VERIFICATION_SUBMITTED, "escrow is not funded"
                    ),
                )

            self._enter(run, "start")
            manifest = await self._stage(run, lambda: self._evidence.upload(files, escrow_id))

            self._enter(run, "evidence_uploaded")
            verdict = await self._stage(
                run, lambda: self._adjudicator.analyze(task_description, manifest)
            )

            self._enter(run, "adjudicated")
            try:
                attestation = self._signer.sign_verdict(escrow_bytes, verdict, manifest)
            except AetherLockError as exc:
                raise self._fail(run, exc) from exc

            if run.cancel_requested:
                raise asyncio.CancelledError
            self._enter(run, "signed")
            transaction = await self._stage(
                run, lambda: self._escrow.submit_verification(escrow_id, attestation)
            )
            self._enter(run, "submitted")

        except asyncio.CancelledError:
            if not run.cancel_requested:
                raise
            raise self._fail(run, PipelineCancelledError(escrow_id)) from None

        record = VerificationRecord(
            escrow_id=escrow_id,
            verdict=verdict,
            manifest=manifest,
            attestation=attestation,
            transaction=transaction,
        )
        logger.info(
            "pipeline.succeeded",
            result=verdict.result,
            confidence=verdict.confidence,
            cid=manifest.content_id,
            signature=transaction.signature,
            already_applied=transaction.already_applied,
        )
        return record

    async def _stage(self, run: PipelineRun, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one stage call with retries; failures become VerificationFailedError."""
        stage = run.stage.value

        def _before_sleep(state: RetryCallState) -> None:
            logger.warning(
                "pipeline.retrying",
                stage=stage,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_base, max=self._retry_max),
                retry=retry_if_exception(_is_retryable),
                before_sleep=_before_sleep,
                reraise=True,
            ):
                with attempt:
                    run.attempts[stage] = attempt.retry_state.attempt_number
                    result = await operation()
        except AetherLockError as exc:
            raise self._fail(run, exc) from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("pipeline.unexpected_error", stage=stage)
            raise self._fail(run, AetherLockError(str(exc), code="INTERNAL_ERROR")) from exc
        return result

    def _enter(self, run: PipelineRun, event_name: str) -> None:
        run.lifecycle.fire(event_name)
        bind_pipeline_context(run.escrow_id, run.stage.value)
        logger.info("pipeline.stage_entered")

    def _fail(self, run: PipelineRun, cause: AetherLockError) -> VerificationFailedError:
        stage = run.stage.value
        if not run.lifecycle.is_final:
            run.lifecycle.fire("fail")
        logger.warning(
            "pipeline.failed",
            failed_stage=stage,
            cause=cause.code,
            message=cause.message,
        )
        return VerificationFailedError(run.escrow_id, stage, cause)
