"""Environment configuration for the XnScore engine.

Environment variables:
    XNSCORE_DATABASE_URL: Event store database URL (in-memory store when unset)
    XNSCORE_CACHE_TTL_SECONDS: Score snapshot TTL (default: 3600)
    XNSCORE_HISTORY_WINDOW_DAYS: Event history window for scoring (default: 730)
    XNSCORE_MAX_CLOCK_SKEW_SECONDS: Tolerated future skew of event timestamps (default: 0)
    XNSCORE_TIER_HYSTERESIS: Tier hysteresis margin in points (default: 0)
    XNSCORE_TIER_THRESHOLDS_JSON: Tier floor overrides, e.g. {"ELITE": 90, "GOOD": 62}
    XNSCORE_AGE_CAPS_JSON: Age cap table, e.g. [[180, 75], [365, 85], [547, 90]]
    XNSCORE_VOUCH_SWEEP_INTERVAL_SECONDS: Enables the background vouch sweeper

Invalid values fail closed with ConfigError at startup.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Final

import pydantic

from xnscore.models.snapshot import Tier
from xnscore.persistence.db import XNSCORE_DATABASE_URL_ENV
from xnscore.scoring.policy import DEFAULT_TIER_THRESHOLDS, ScoringPolicy

ENV_CACHE_TTL_SECONDS: Final[str] = "XNSCORE_CACHE_TTL_SECONDS"
ENV_HISTORY_WINDOW_DAYS: Final[str] = "XNSCORE_HISTORY_WINDOW_DAYS"
ENV_MAX_CLOCK_SKEW_SECONDS: Final[str] = "XNSCORE_MAX_CLOCK_SKEW_SECONDS"
ENV_TIER_HYSTERESIS: Final[str] = "XNSCORE_TIER_HYSTERESIS"
ENV_TIER_THRESHOLDS_JSON: Final[str] = "XNSCORE_TIER_THRESHOLDS_JSON"
ENV_AGE_CAPS_JSON: Final[str] = "XNSCORE_AGE_CAPS_JSON"
ENV_VOUCH_SWEEP_INTERVAL_SECONDS: Final[str] = "XNSCORE_VOUCH_SWEEP_INTERVAL_SECONDS"


class ConfigError(Exception):
    """Raised when engine configuration is invalid."""


@dataclass(frozen=True)
class EngineConfig:
    """Engine configuration (immutable).

    Attributes:
        policy: Validated scoring policy.
        database_url: Database URL for every durable component, or None to keep
            everything in memory.
        vouch_sweep_interval_seconds: Sweeper interval, or None to disable it.
    """

    policy: ScoringPolicy = field(default_factory=ScoringPolicy)
    database_url: str | None = None
    vouch_sweep_interval_seconds: int | None = None


def _raw(env_var: str) -> str | None:
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _parse_int(env_var: str, default: int, minimum: int = 1) -> int:
    """Parse an integer >= ``minimum`` from the environment.

    Raises:
        ConfigError: If the value is set but not a valid integer in range.
    """
    raw = _raw(env_var)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be an integer, got '{raw}'") from e
    if value < minimum:
        raise ConfigError(f"{env_var} must be >= {minimum}, got {value}")
    return value


def _parse_non_negative_float(env_var: str, default: float) -> float:
    raw = _raw(env_var)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be a number, got '{raw}'") from e
    if value < 0 or value != value:
        raise ConfigError(f"{env_var} must be a non-negative number, got {raw}")
    return value


def _parse_json(env_var: str) -> Any:
    raw = _raw(env_var)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{env_var} must be valid JSON: {e}") from e


def _parse_tier_thresholds(value: Any) -> dict[Tier, float]:
    if not isinstance(value, dict):
        raise ConfigError(f"{ENV_TIER_THRESHOLDS_JSON} must be a JSON object of tier -> floor")
    thresholds = dict(DEFAULT_TIER_THRESHOLDS)
    for name, floor in value.items():
        try:
            tier = Tier[str(name).upper()]
        except KeyError as e:
            raise ConfigError(f"{ENV_TIER_THRESHOLDS_JSON}: unknown tier '{name}'") from e
        if not isinstance(floor, int | float) or isinstance(floor, bool):
            raise ConfigError(f"{ENV_TIER_THRESHOLDS_JSON}: floor for {name} must be a number")
        thresholds[tier] = float(floor)
    return thresholds


def _parse_age_caps(value: Any) -> tuple[tuple[int, float], ...]:
    if not isinstance(value, list):
        raise ConfigError(f"{ENV_AGE_CAPS_JSON} must be a JSON list of [days, cap] pairs")
    caps: list[tuple[int, float]] = []
    for entry in value:
        if not isinstance(entry, list) or len(entry) != 2:
            raise ConfigError(f"{ENV_AGE_CAPS_JSON}: each entry must be [days, cap]")
        days, cap = entry
        if not isinstance(days, int) or not isinstance(cap, int | float):
            raise ConfigError(f"{ENV_AGE_CAPS_JSON}: entry {entry} must be [int, number]")
        caps.append((days, float(cap)))
    return tuple(caps)


def load_engine_config() -> EngineConfig:
    """Load engine configuration from environment variables.

    Returns:
        EngineConfig with a validated ScoringPolicy.

    Raises:
        ConfigError: If any value is invalid or the resulting policy is inconsistent.
    """
    overrides: dict[str, Any] = {
        "cache_ttl_seconds": _parse_int(ENV_CACHE_TTL_SECONDS, 3600),
        "history_window_days": _parse_int(ENV_HISTORY_WINDOW_DAYS, 730),
        "max_clock_skew_seconds": _parse_int(ENV_MAX_CLOCK_SKEW_SECONDS, 0, minimum=0),
        "tier_hysteresis": _parse_non_negative_float(ENV_TIER_HYSTERESIS, 0.0),
    }
    thresholds = _parse_json(ENV_TIER_THRESHOLDS_JSON)
    if thresholds is not None:
        overrides["tier_thresholds"] = _parse_tier_thresholds(thresholds)
    age_caps = _parse_json(ENV_AGE_CAPS_JSON)
    if age_caps is not None:
        overrides["age_caps"] = _parse_age_caps(age_caps)

    try:
        policy = ScoringPolicy(**overrides)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid scoring policy: {e}") from e

    sweep_interval = None
    if _raw(ENV_VOUCH_SWEEP_INTERVAL_SECONDS) is not None:
        sweep_interval = _parse_int(ENV_VOUCH_SWEEP_INTERVAL_SECONDS, 0)

    return EngineConfig(
        policy=policy,
        database_url=_raw(XNSCORE_DATABASE_URL_ENV),
        vouch_sweep_interval_seconds=sweep_interval,
    )
