"""Tests for the structlog setup and secret redaction."""

from __future__ import annotations

import json
import logging

import structlog

from aetherlock_oracle.logging_config import (
    bind_pipeline_context,
    clear_pipeline_context,
    get_logger,
    redact_secrets,
    setup_logging,
)


def test_redacts_secret_fields() -> None:
    event = redact_secrets(
        None,
        "info",
        {"event": "signer.loaded", "ai_agent_private_key": "5Kd3...", "pinata_jwt": "eyJ", "public_key": "Abc"},
    )

    assert event["ai_agent_private_key"] == "***"
    assert event["pinata_jwt"] == "***"
    assert event["public_key"] == "Abc"


def test_json_logs_carry_pipeline_context(capsys) -> None:  # noqa: ANN001
    setup_logging(log_level="INFO", json_logs=True)
    try:
        bind_pipeline_context("9f1c2a7e4b3d4c5e8f901a2b3c4d5e6f", "ADJUDICATING")
        get_logger("test").info("pipeline.stage_entered", api_key="sk-live")
    finally:
        clear_pipeline_context()
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()

    entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert entry["event"] == "pipeline.stage_entered"
    assert entry["escrow_id"] == "9f1c2a7e4b3d4c5e8f901a2b3c4d5e6f"
    assert entry["stage"] == "ADJUDICATING"
    assert entry["api_key"] == "***"
    assert entry["level"] == "info"
