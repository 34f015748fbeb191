"""Tests for the VerificationOrchestrator.

The pipeline runs against in-memory stand-ins for the content store, the
judge and the on-chain program; the signer is real.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import (
    ESCROW_ID,
    TASK,
    FakeAdjudicator,
    InMemoryContentStore,
    InMemoryEscrowProgram,
)
from aetherlock_oracle.domain.enums import EscrowStatus, PipelineStage
from aetherlock_oracle.domain.exceptions import (
    AdjudicationServiceError,
    ChainRpcError,
    EscrowNotFoundError,
    InvalidRequestError,
    InvalidStateTransitionError,
    NotCancellableError,
    PayloadTooLargeError,
    PipelineCancelledError,
    ProgramRejectedError,
    StorageUnavailableError,
    VerificationFailedError,
    VerificationInProgressError,
)
from aetherlock_oracle.domain.models import EscrowParams, EvidenceFile, evidence_digest
from aetherlock_oracle.orchestration import LocalFlightGuard, VerificationOrchestrator
from aetherlock_oracle.services.attestation_signer import AttestationSigner, verify_attestation
from aetherlock_oracle.services.escrow_client import EscrowClient
from aetherlock_oracle.services.evidence_store import EvidenceStore


@pytest.fixture
def flight_guard() -> LocalFlightGuard:
    return LocalFlightGuard()


@pytest.fixture
def orchestrator(
    evidence_store: EvidenceStore,
    adjudicator: FakeAdjudicator,
    signer: AttestationSigner,
    escrow_client: EscrowClient,
    flight_guard: LocalFlightGuard,
) -> VerificationOrchestrator:
    return VerificationOrchestrator(
        evidence_store,
        adjudicator,
        signer,
        escrow_client,
        flight_guard=flight_guard,
        max_attempts=3,
        retry_base_seconds=0,
        retry_max_seconds=0,
    )


async def _wait_for_stage(
    orchestrator: VerificationOrchestrator, stage: PipelineStage, escrow_id: str = ESCROW_ID
) -> None:
    for _ in range(200):
        run = orchestrator.status(escrow_id)
        if run is not None and run.stage == stage:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"run never reached {stage}")


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_passing_verdict_is_submitted(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        escrow_client: EscrowClient,
        signer: AttestationSigner,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        record = await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert record.verdict.result is True
        assert record.manifest.digest == evidence_digest(record.manifest.content_id)
        assert record.attestation.evidence_digest == record.manifest.digest
        assert record.attestation.escrow_id == bytes.fromhex(ESCROW_ID)
        assert record.attestation.public_key == signer.public_key
        assert verify_attestation(record.attestation)
        assert record.transaction.status == EscrowStatus.VERIFICATION_SUBMITTED
        assert program.sends["submit_verification"] == 1

        account = await escrow_client.get_escrow(ESCROW_ID)
        assert account.evidence_hash == record.manifest.digest
        assert account.verification_result is True
        assert orchestrator.status(ESCROW_ID) is None

    @pytest.mark.asyncio
    async def test_failing_verdict_is_still_submitted(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        escrow_client: EscrowClient,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.result = False
        adjudicator.confidence = 40

        record = await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert record.verdict.result is False
        assert record.attestation.result is False
        account = await escrow_client.get_escrow(ESCROW_ID)
        assert account.status == EscrowStatus.VERIFICATION_SUBMITTED
        assert account.verification_result is False

    @pytest.mark.asyncio
    async def test_record_serializes(
        self, orchestrator: VerificationOrchestrator, funded_escrow, evidence_files: list[EvidenceFile]
    ) -> None:
        body = (await orchestrator.run(ESCROW_ID, TASK, evidence_files)).to_dict()

        assert body["escrow_id"] == ESCROW_ID
        assert set(body) == {"escrow_id", "verdict", "evidence", "attestation", "transaction"}
        assert len(bytes.fromhex(body["attestation"]["message"])) == 57


class TestInputFailures:
    @pytest.mark.asyncio
    async def test_oversized_bundle_fails_at_upload(
        self,
        orchestrator: VerificationOrchestrator,
        content_store: InMemoryContentStore,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        funded_escrow,
    ) -> None:
        files = [EvidenceFile(name="video.mp4", mime_type="video/mp4", content=b"x" * 2048)]

        with pytest.raises(VerificationFailedError) as exc_info:
            await orchestrator.run(ESCROW_ID, TASK, files)

        assert exc_info.value.stage == PipelineStage.EVIDENCE_UPLOADING
        assert isinstance(exc_info.value.cause, PayloadTooLargeError)
        assert content_store.pins == 0
        assert adjudicator.calls == 0
        assert program.sends["submit_verification"] == 0

    @pytest.mark.asyncio
    async def test_escrow_must_be_funded(
        self,
        orchestrator: VerificationOrchestrator,
        content_store: InMemoryContentStore,
        escrow_client: EscrowClient,
        escrow_params: EscrowParams,
        evidence_files: list[EvidenceFile],
    ) -> None:
        await escrow_client.create_escrow(escrow_params)

        with pytest.raises(VerificationFailedError) as exc_info:
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert exc_info.value.stage == PipelineStage.IDLE
        assert isinstance(exc_info.value.cause, InvalidStateTransitionError)
        assert content_store.pins == 0

    @pytest.mark.asyncio
    async def test_missing_escrow(
        self, orchestrator: VerificationOrchestrator, evidence_files: list[EvidenceFile]
    ) -> None:
        with pytest.raises(VerificationFailedError) as exc_info:
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)
        assert isinstance(exc_info.value.cause, EscrowNotFoundError)

    @pytest.mark.asyncio
    async def test_malformed_escrow_id(
        self,
        orchestrator: VerificationOrchestrator,
        flight_guard: LocalFlightGuard,
        evidence_files: list[EvidenceFile],
    ) -> None:
        with pytest.raises(InvalidRequestError):
            await orchestrator.run("not-hex", TASK, evidence_files)
        assert not flight_guard.is_held("not-hex")


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_storage_errors_are_retried(
        self,
        orchestrator: VerificationOrchestrator,
        content_store: InMemoryContentStore,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        content_store.failures = [StorageUnavailableError("503"), StorageUnavailableError("503")]

        record = await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert record.verdict.result is True
        assert content_store.pins == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.failures = [AdjudicationServiceError("timeout") for _ in range(5)]

        with pytest.raises(VerificationFailedError) as exc_info:
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert exc_info.value.stage == PipelineStage.ADJUDICATING
        assert isinstance(exc_info.value.cause, AdjudicationServiceError)
        assert adjudicator.calls == 3
        assert program.sends["submit_verification"] == 0

    @pytest.mark.asyncio
    async def test_rpc_errors_are_retried_at_submission(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        program.failures = [ChainRpcError("connection reset")]

        record = await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert record.transaction.signature is not None
        assert program.sends["submit_verification"] == 1

    @pytest.mark.asyncio
    async def test_program_rejection_is_not_retried(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        program.failures = [ProgramRejectedError("submit_verification", "signature verification failed")]

        with pytest.raises(VerificationFailedError) as exc_info:
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        assert exc_info.value.stage == PipelineStage.SUBMITTING
        assert isinstance(exc_info.value.cause, ProgramRejectedError)
        assert program.failures == []
        assert program.sends["submit_verification"] == 0


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_request_rejected(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.ADJUDICATING)

        with pytest.raises(VerificationInProgressError):
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)

        adjudicator.gate.set()
        await first
        assert program.sends["submit_verification"] == 1

    @pytest.mark.asyncio
    async def test_gathered_requests_submit_once(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        results = await asyncio.gather(
            *(orchestrator.run(ESCROW_ID, TASK, evidence_files) for _ in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, VerificationInProgressError)]
        assert len(successes) == 1
        assert len(rejected) == 4
        assert program.sends["submit_verification"] == 1

    @pytest.mark.asyncio
    async def test_escrow_id_spellings_share_one_run(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.ADJUDICATING)

        with pytest.raises(VerificationInProgressError):
            await orchestrator.run("0x" + ESCROW_ID.upper(), TASK, evidence_files)
        assert orchestrator.status(ESCROW_ID.upper()).escrow_id == ESCROW_ID

        adjudicator.gate.set()
        record = await first
        assert record.escrow_id == ESCROW_ID
        assert program.sends["submit_verification"] == 1

    @pytest.mark.asyncio
    async def test_lease_released_after_failure(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        flight_guard: LocalFlightGuard,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.failures = [AdjudicationServiceError("down") for _ in range(3)]
        with pytest.raises(VerificationFailedError):
            await orchestrator.run(ESCROW_ID, TASK, evidence_files)
        assert not flight_guard.is_held(ESCROW_ID)

        record = await orchestrator.run(ESCROW_ID, TASK, evidence_files)
        assert record.verdict.result is True


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_submission(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        flight_guard: LocalFlightGuard,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.ADJUDICATING)

        run = orchestrator.cancel(ESCROW_ID)
        assert run.cancel_requested

        with pytest.raises(VerificationFailedError) as exc_info:
            await task
        assert exc_info.value.stage == PipelineStage.ADJUDICATING
        assert isinstance(exc_info.value.cause, PipelineCancelledError)
        assert program.sends["submit_verification"] == 0
        assert not flight_guard.is_held(ESCROW_ID)

    @pytest.mark.asyncio
    async def test_cannot_cancel_once_submitting(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        program.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.SUBMITTING)

        with pytest.raises(NotCancellableError):
            orchestrator.cancel(ESCROW_ID)

        program.gate.set()
        record = await task
        assert record.transaction.status == EscrowStatus.VERIFICATION_SUBMITTED

    @pytest.mark.asyncio
    async def test_caller_cancelled_during_submission(
        self,
        orchestrator: VerificationOrchestrator,
        program: InMemoryEscrowProgram,
        escrow_client: EscrowClient,
        flight_guard: LocalFlightGuard,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        program.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.SUBMITTING)

        task.cancel()
        for _ in range(10):
            await asyncio.sleep(0)
        assert not task.done()
        assert flight_guard.is_held(ESCROW_ID)
        assert program.sends["submit_verification"] == 0

        program.gate.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert program.sends["submit_verification"] == 1
        assert not flight_guard.is_held(ESCROW_ID)
        account = await escrow_client.get_escrow(ESCROW_ID)
        assert account.status == EscrowStatus.VERIFICATION_SUBMITTED

    @pytest.mark.asyncio
    async def test_caller_cancelled_before_submission(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        program: InMemoryEscrowProgram,
        flight_guard: LocalFlightGuard,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.ADJUDICATING)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        adjudicator.gate.set()
        await asyncio.sleep(0)
        assert program.sends["submit_verification"] == 0
        assert not flight_guard.is_held(ESCROW_ID)
        assert orchestrator.status(ESCROW_ID) is None

    def test_cancel_without_run(self, orchestrator: VerificationOrchestrator) -> None:
        with pytest.raises(NotCancellableError, match="no run in flight"):
            orchestrator.cancel(ESCROW_ID)

    @pytest.mark.asyncio
    async def test_status_reports_stage(
        self,
        orchestrator: VerificationOrchestrator,
        adjudicator: FakeAdjudicator,
        funded_escrow,
        evidence_files: list[EvidenceFile],
    ) -> None:
        adjudicator.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(ESCROW_ID, TASK, evidence_files))
        await _wait_for_stage(orchestrator, PipelineStage.ADJUDICATING)

        body = orchestrator.status(ESCROW_ID).to_dict()
        assert body["stage"] == "ADJUDICATING"
        assert body["cancellable"] is True
        assert body["attempts"]["EVIDENCE_UPLOADING"] == 1

        adjudicator.gate.set()
        await task
