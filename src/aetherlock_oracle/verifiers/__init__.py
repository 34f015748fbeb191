"""Adjudication of delivered work.

    - Adjudicator: LLM judge via LiteLLM, with a fail-safe reply parser and
      a hard confidence floor.
"""

from aetherlock_oracle.verifiers.adjudicator import (
    CONFIDENCE_FLOOR,
    Adjudicator,
    parse_verdict_fields,
)

__all__ = ["CONFIDENCE_FLOOR", "Adjudicator", "parse_verdict_fields"]
