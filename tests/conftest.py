"""Pytest configuration and fixtures for XnScore tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.synthetic import API_KEYS, ELDER_ACCOUNT_AGE_DAYS, NOW, elder_events
from xnscore.api.auth import XNSCORE_API_KEYS_ENV
from xnscore.api.main import create_app
from xnscore.audit.sink import AUDIT_LOG_PATH_ENV, InMemoryAuditSink
from xnscore.clock import FixedClock
from xnscore.config import (
    ENV_AGE_CAPS_JSON,
    ENV_CACHE_TTL_SECONDS,
    ENV_HISTORY_WINDOW_DAYS,
    ENV_MAX_CLOCK_SKEW_SECONDS,
    ENV_TIER_HYSTERESIS,
    ENV_TIER_THRESHOLDS_JSON,
    ENV_VOUCH_SWEEP_INTERVAL_SECONDS,
    EngineConfig,
)
from xnscore.persistence.db import XNSCORE_DATABASE_URL_ENV
from xnscore.service import XnScoreService

_XNSCORE_ENV_VARS = (
    ENV_AGE_CAPS_JSON,
    ENV_CACHE_TTL_SECONDS,
    ENV_HISTORY_WINDOW_DAYS,
    ENV_MAX_CLOCK_SKEW_SECONDS,
    ENV_TIER_HYSTERESIS,
    ENV_TIER_THRESHOLDS_JSON,
    ENV_VOUCH_SWEEP_INTERVAL_SECONDS,
    XNSCORE_DATABASE_URL_ENV,
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clear engine configuration and keep audit files inside tmp_path.

    Tests that exercise configuration set the variables they need.
    """
    for env_var in _XNSCORE_ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv(AUDIT_LOG_PATH_ENV, str(tmp_path / "audit.jsonl"))


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to the synthetic NOW."""
    return FixedClock(NOW)


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def service(clock: FixedClock, audit_sink: InMemoryAuditSink) -> XnScoreService:
    """In-memory service sharing the fixed clock."""
    return XnScoreService(audit_sink=audit_sink, clock=clock)


@pytest.fixture
def seed_elder(service: XnScoreService) -> Callable[[str], str]:
    """Register a member whose history resolves to the Elite tier."""

    def _seed(member_id: str = "elder-1") -> str:
        now = service.clock()
        service.register_member(
            member_id, "Elder", now - timedelta(days=ELDER_ACCOUNT_AGE_DAYS)
        )
        for event in elder_events(member_id, now):
            service.record_event(event)
        return member_id

    return _seed


@pytest.fixture
def api_client(
    service: XnScoreService,
    audit_sink: InMemoryAuditSink,
    monkeypatch: pytest.MonkeyPatch,
) -> TestClient:
    """Test client over the shared service with the synthetic API keys configured."""
    monkeypatch.setenv(XNSCORE_API_KEYS_ENV, json.dumps(API_KEYS))
    app = create_app(service=service, audit_sink=audit_sink, config=EngineConfig())
    return TestClient(app)
