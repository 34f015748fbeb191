"""Adjudicator — uses an LLM judge to decide whether delivered work completes a task.

Verification flow:
    1. Build one structured prompt from the task description and the
       evidence listing (name, type, size) plus the bundle's gateway URL.
       Raw file bytes are never sent.
    2. Call the LLM via LiteLLM (Gemini, Claude, GPT-4o, ...).
    3. Parse the three-line RESULT / CONFIDENCE / REASONING reply.
    4. Apply the confidence floor and return a Verdict.

Fail-safe parsing:
    - RESULT is positive only when it reads exactly COMPLETED.
    - A missing or non-numeric CONFIDENCE is 0.
    - A reply with none of the three fields is a failing verdict with
      confidence 0, not an error.
    - Confidence below CONFIDENCE_FLOOR forces result False.

Transport failures, timeouts and empty replies raise AdjudicationServiceError;
retrying is the orchestrator's decision.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable

import litellm

from aetherlock_oracle.config import Settings
from aetherlock_oracle.domain.exceptions import (
    AdjudicationServiceError,
    MalformedResponseError,
)
from aetherlock_oracle.domain.models import EvidenceManifest, Verdict
from aetherlock_oracle.logging_config import get_logger

logger = get_logger(__name__)

# Hard safety floor, not configurable per escrow.
CONFIDENCE_FLOOR = 70

POSITIVE_RESULT = "COMPLETED"

# --- Judge Prompts ---
ADJUDICATOR_SYSTEM_PROMPT = """You are an AI verification agent for the AetherLock escrow protocol.
Funds held in escrow are released on your decision, so be OBJECTIVE and STRICT.
If the evidence does not clearly demonstrate completion, the task is NOT_COMPLETED.

You MUST respond in EXACTLY this format (no extra text before or after):

RESULT: COMPLETED or NOT_COMPLETED
CONFIDENCE: an integer from 0 to 100
REASONING: a brief explanation of your decision
"""

ADJUDICATOR_USER_TEMPLATE = """Analyze the provided evidence to determine if the task has been completed satisfactorily.

## Task Description
{task_description}

## Evidence Files
{evidence_listing}

## Evidence Bundle
{evidence_reference}

Instructions:
1. Carefully analyze all provided evidence
2. Determine if the evidence demonstrates task completion
3. Consider quality, completeness, and adherence to requirements
4. Provide a confidence score (0-100)
5. Give a clear result (COMPLETED or NOT_COMPLETED)"""

_LABELS = ("RESULT", "CONFIDENCE", "REASONING")
_LABEL_LINE = re.compile(r"^[\s*#>-]*(RESULT|CONFIDENCE|REASONING)\s*\**\s*:(.*)$", re.IGNORECASE)
_LEADING_INT = re.compile(r"\d+")


def build_prompt(task_description: str, manifest: EvidenceManifest) -> str:
    listing = "\n".join(
        f"- {entry.file_name} ({entry.mime_type}, {entry.byte_size} bytes)"
        for entry in manifest.entries
    )
    reference = manifest.gateway_url or f"ipfs://{manifest.content_id}"
    return ADJUDICATOR_USER_TEMPLATE.format(
        task_description=task_description,
        evidence_listing=listing or "(none)",
        evidence_reference=reference,
    )


def _parse_result(value: str) -> bool:
    return value.strip().strip("[]*. ").upper() == POSITIVE_RESULT


def _parse_confidence(value: str) -> int:
    match = _LEADING_INT.match(value.strip().strip("[]* "))
    if match is None:
        return 0
    return max(0, min(100, int(match.group())))


def parse_verdict_fields(response: str) -> tuple[bool, int, str]:
    """Parse a judge reply into (raw_result, confidence, reasoning).

    Expected format:
        RESULT: COMPLETED
        CONFIDENCE: 85
        REASONING: The landing page matches the brief because...

    Raises:
        MalformedResponseError: None of the three fields is present.
    """
    fields: dict[str, list[str]] = {}
    current: str | None = None

    for line in response.splitlines():
        match = _LABEL_LINE.match(line)
        if match:
            current = match.group(1).upper()
            fields.setdefault(current, []).append(match.group(2).strip().lstrip("*").strip())
        elif current == "REASONING" and line.strip():
            # REASONING may continue over several lines
            fields[current].append(line.strip())

    if not any(label in fields for label in _LABELS):
        raise MalformedResponseError(response)

    result = _parse_result(fields["RESULT"][0]) if "RESULT" in fields else False
    confidence = _parse_confidence(fields["CONFIDENCE"][0]) if "CONFIDENCE" in fields else 0
    reasoning = " ".join(part for part in fields.get("REASONING", []) if part)
    return result, confidence, reasoning


def apply_confidence_floor(result: bool, confidence: int) -> bool:
    return result and confidence >= CONFIDENCE_FLOOR


class Adjudicator:
    """LLM-judge adjudication of task completion."""

    def __init__(
        self,
        model: str = "gemini/gemini-2.0-flash",
        fallback_models: list[str] | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.0,
        timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._model = model
        self._fallback_models = fallback_models or []
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> Adjudicator:
        return cls(
            model=settings.litellm_model,
            fallback_models=settings.litellm_fallback_model_list,
            max_tokens=settings.litellm_max_tokens,
            temperature=settings.litellm_temperature,
            timeout_seconds=settings.adjudication_timeout_seconds,
        )

    @property
    def model(self) -> str:
        return self._model

    async def analyze(self, task_description: str, manifest: EvidenceManifest) -> Verdict:
        """Judge the evidence against the task.

        Raises:
            AdjudicationServiceError: Transport failure, timeout or empty reply.
        """
        logger.info(
            "adjudicator.start",
            cid=manifest.content_id,
            files=len(manifest.entries),
            task_preview=task_description[:100],
        )

        reply = await self._call_llm(build_prompt(task_description, manifest))
        timestamp = int(self._clock())

        try:
            raw_result, confidence, reasoning = parse_verdict_fields(reply)
        except MalformedResponseError as exc:
            logger.warning("adjudicator.malformed_reply", reply_preview=exc.raw_response[:200])
            return Verdict(
                result=False,
                confidence=0,
                reasoning=f"Unparseable adjudicator reply: {reply[:200]}",
                timestamp=timestamp,
            )

        result = apply_confidence_floor(raw_result, confidence)
        if raw_result and not result:
            logger.info("adjudicator.confidence_floor", confidence=confidence, floor=CONFIDENCE_FLOOR)

        verdict = Verdict(
            result=result,
            confidence=confidence,
            reasoning=reasoning or "No reasoning provided",
            timestamp=timestamp,
        )
        logger.info("adjudicator.verdict", result=verdict.result, confidence=verdict.confidence)
        return verdict

    async def _call_llm(self, user_message: str) -> str:
        kwargs: dict = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": ADJUDICATOR_SYSTEM_PROMPT},
                {"role": "user", "content": user_message},
            ],
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if self._fallback_models:
            kwargs["fallbacks"] = self._fallback_models

        try:
            async with asyncio.timeout(self._timeout):
                response = await litellm.acompletion(**kwargs)
        except TimeoutError as exc:
            raise AdjudicationServiceError(
                f"Adjudication timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            logger.warning("adjudicator.service_error", model=self._model, error=str(exc))
            raise AdjudicationServiceError(f"Judgment service failed: {exc}") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise AdjudicationServiceError("Judgment service returned no choices") from exc
        if not content or not content.strip():
            raise AdjudicationServiceError("Judgment service returned an empty reply")
        return content.strip()
