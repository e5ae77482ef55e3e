"""Tests for the daemon process wrapper."""

import pytest
from loguru import logger

from ahacapture.engine.main import CaptureDaemon


@pytest.mark.asyncio
async def test_daemon_logs_degraded_mode_report(remote_config, monkeypatch):
    monkeypatch.delenv("AHA_FIREBASE_API_KEY", raising=False)
    monkeypatch.delenv("AHA_FIREBASE_PROJECT_ID", raising=False)
    remote_config.api.host = "127.0.0.1"
    remote_config.api.port = 0

    messages = []
    sink_id = logger.add(messages.append, level="WARNING", format="{message}")
    try:
        daemon = CaptureDaemon(remote_config)
        await daemon.start()
        await daemon.stop()
    finally:
        logger.remove(sink_id)

    reports = [m for m in messages if m.startswith("config.failed:")]
    assert len(reports) == 1
    assert "local-only mode" in reports[0]
