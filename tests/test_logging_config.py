from __future__ import annotations

import json

import structlog

from ragqa.logging_config import bind_run, setup_logging


def test_bind_run_scopes_identity():
    with bind_run("run-1", "acme"):
        assert structlog.contextvars.get_contextvars() == {"run_id": "run-1", "tenant_id": "acme"}
    assert "run_id" not in structlog.contextvars.get_contextvars()


def test_json_output_carries_bound_run(capsys):
    setup_logging("INFO", json_output=True)
    try:
        logger = structlog.get_logger("test")
        with bind_run("run-1", "acme"):
            logger.info("phase_started", phase="executing")
        logger.debug("hidden")
        lines = capsys.readouterr().err.strip().splitlines()
    finally:
        structlog.reset_defaults()

    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "phase_started"
    assert event["run_id"] == "run-1"
    assert event["tenant_id"] == "acme"
    assert event["level"] == "info"
