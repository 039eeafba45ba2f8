"""Synthetic deterministic fixtures for XnScore tests.

Event histories are built relative to a fixed evaluation time so scores are
reproducible across runs.
"""

from tests.fixtures.synthetic.api_keys import (
    ADMIN_KEY,
    API_KEYS,
    AUDITOR_KEY,
    ELDER_KEY,
    INTEGRATION_KEY,
    NEWCOMER_KEY,
    auth_headers,
)
from tests.fixtures.synthetic.histories import (
    ELDER_ACCOUNT_AGE_DAYS,
    NOW,
    elder_events,
    make_event,
    scenario_one_events,
)

__all__ = [
    "ADMIN_KEY",
    "API_KEYS",
    "AUDITOR_KEY",
    "ELDER_ACCOUNT_AGE_DAYS",
    "ELDER_KEY",
    "INTEGRATION_KEY",
    "NEWCOMER_KEY",
    "NOW",
    "auth_headers",
    "elder_events",
    "make_event",
    "scenario_one_events",
]
