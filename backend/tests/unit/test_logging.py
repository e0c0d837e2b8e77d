"""Tests for structured logging helpers."""

from __future__ import annotations

from dpp_anchor.core.logging import get_logger, redact_secrets


def test_redact_secrets_masks_key_material() -> None:
    event = {
        "event": "passport_prepared",
        "token_id": "7",
        "verification_key": "secret",
        "signing_key": "seed",
    }

    result = redact_secrets(None, "info", event)

    assert result["verification_key"] == "[redacted]"
    assert result["signing_key"] == "[redacted]"
    assert result["token_id"] == "7"
    assert result["event"] == "passport_prepared"


def test_get_logger_binds_context() -> None:
    logger = get_logger("dpp_anchor.tests").bind(token_id="7")
    assert logger is not None
