"""Orchestration layer — the single-flight verification pipeline."""

from aetherlock_oracle.orchestration.pipeline import PipelineRun, VerificationOrchestrator
from aetherlock_oracle.orchestration.single_flight import LocalFlightGuard

__all__ = ["LocalFlightGuard", "PipelineRun", "VerificationOrchestrator"]
