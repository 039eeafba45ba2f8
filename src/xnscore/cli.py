"""XnScore CLI - deterministic command-line interface.

Usage:
    xnscore score --input PATH [--now ISO8601]
    xnscore tiers [--score N]
    xnscore serve [--host HOST] [--port PORT]

The score input is a JSON document:

    {
      "member_id": "m-1",
      "account_created_at": "2025-01-01T00:00:00+00:00",
      "now": "2025-10-08T00:00:00+00:00",
      "events": [{"kind": "ON_TIME_PAYMENT", "timestamp": "...", "magnitude": 50.0}]
    }

Exit codes:
    0: Success
    1: Internal error
    2: Invalid input (unreadable JSON, invalid event, bad arguments)
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from typing import Any

import pydantic

from xnscore.clock import FixedClock, utc_now
from xnscore.config import ConfigError, load_engine_config
from xnscore.errors import ValidationError
from xnscore.models.score_event import ScoreEvent
from xnscore.models.snapshot import ScoreSnapshot, Tier
from xnscore.scoring.policy import ScoringPolicy
from xnscore.scoring.tiers import TierResolver
from xnscore.service import XnScoreService


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str) -> dict[str, Any]:
    return {"errors": [{"code": code, "message": message}], "pass": False}


def _load_json_input(input_path: str | None) -> tuple[Any, str | None]:
    """Load JSON from file or stdin.

    Returns:
        Tuple of (parsed_data, error_message). If error_message is not None,
        parsed_data should be ignored.
    """
    try:
        if input_path:
            with open(input_path, encoding="utf-8") as f:
                content = f.read()
        else:
            content = sys.stdin.read()

        if not content.strip():
            return None, "Empty input"

        return json.loads(content), None
    except FileNotFoundError:
        return None, f"File not found: {input_path}"
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON: {e}"
    except OSError as e:
        return None, f"Cannot read input: {e}"


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp must include a UTC offset: {value}")
    return parsed


def snapshot_to_dict(snapshot: ScoreSnapshot) -> dict[str, Any]:
    """JSON-ready view of a snapshot."""
    return {
        "member_id": snapshot.member_id,
        "score": round(snapshot.score, 4),
        "display_score": snapshot.display_score,
        "raw_score": round(snapshot.raw_score, 4),
        "tier": int(snapshot.tier),
        "tier_label": snapshot.tier.label,
        "age_cap": snapshot.age_cap,
        "age_cap_applied": snapshot.age_cap_applied,
        "account_age_days": round(snapshot.account_age_days, 4),
        "breakdown": {
            factor.value: {
                "raw_score": round(fs.raw_score, 4),
                "max_score": fs.max_score,
                "status": fs.status.value,
            }
            for factor, fs in snapshot.factor_breakdown.items()
        },
        "bonuses": snapshot.bonuses,
        "penalties": snapshot.penalties,
        "has_unresolved_default": snapshot.has_unresolved_default,
    }


def cmd_score(args: argparse.Namespace, policy: ScoringPolicy) -> int:
    """Score a member from a JSON events document.

    Exit codes:
        0: Scored
        2: Invalid input
    """
    data, error_msg = _load_json_input(args.input)
    if error_msg is not None:
        _output_json(_make_error_result("INVALID_JSON", error_msg))
        return 2
    if not isinstance(data, dict) or not data.get("member_id"):
        _output_json(_make_error_result("INVALID_INPUT", "Input must be an object with member_id"))
        return 2

    try:
        now_raw = args.now or data.get("now")
        now = _parse_time(now_raw) if now_raw else utc_now()
        created_raw = data.get("account_created_at")
        created_at = _parse_time(created_raw) if created_raw else now
    except (TypeError, ValueError) as e:
        _output_json(_make_error_result("INVALID_TIMESTAMP", str(e)))
        return 2

    member_id = str(data["member_id"])
    service = XnScoreService(policy=policy, clock=FixedClock(now))
    service.register_member(member_id, str(data.get("display_name", "")), created_at)

    for index, raw_event in enumerate(data.get("events") or []):
        try:
            if not isinstance(raw_event, dict):
                raise TypeError("event must be an object")
            event_member = raw_event.get("member_id", member_id)
            if event_member != member_id:
                raise TypeError(
                    f"event member_id {event_member!r} does not match document member_id"
                )
            event = ScoreEvent.model_validate({**raw_event, "member_id": member_id})
            # Replayed history may carry ledger-written kinds; append as-is.
            service.store.append(event)
        except ValidationError as e:
            _output_json(_make_error_result(e.code, f"events[{index}]: {e.message}"))
            return 2
        except (pydantic.ValidationError, TypeError) as e:
            _output_json(_make_error_result("INVALID_EVENT", f"events[{index}]: {e}"))
            return 2

    _output_json(snapshot_to_dict(service.score(member_id)))
    return 0


def cmd_tiers(args: argparse.Namespace, policy: ScoringPolicy) -> int:
    """Print the tier table, or resolve a single score when --score is given."""
    resolver = TierResolver(policy)
    tiers = []
    for tier in sorted(Tier):
        benefits = resolver.benefits(tier)
        tiers.append(
            {
                "tier": int(tier),
                "label": tier.label,
                "min_score": resolver.score_floor(tier),
                "can_join_circles": benefits.can_join_circles,
                "advance_limit": benefits.advance_limit,
                "advance_apr_pct": benefits.advance_apr_pct,
                "early_withdrawal_fee_pct": benefits.early_withdrawal_fee_pct,
                "late_bonus_pct": benefits.late_bonus_pct,
                "description": benefits.description,
            }
        )
    result: dict[str, Any] = {"tiers": tiers}

    if args.score is not None:
        if not 0.0 <= args.score <= 100.0:
            _output_json(_make_error_result("INVALID_SCORE", "Score must be within 0-100"))
            return 2
        progress = resolver.progress_to_next_tier(args.score)
        result["resolved"] = {
            "score": args.score,
            "tier": int(progress.current_tier),
            "label": progress.current_tier.label,
            "next_tier": int(progress.next_tier) if progress.next_tier is not None else None,
            "points_needed": progress.points_needed,
            "progress_pct": progress.progress_pct,
        }

    _output_json(result)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from xnscore.api.main import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level="info")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="xnscore",
        description="XnScore - trust scoring for savings circles",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    score_parser = subparsers.add_parser("score", help="Score a member from a JSON event file")
    score_parser.add_argument(
        "--input",
        required=False,
        default=None,
        metavar="PATH",
        help="Path to JSON file (reads from stdin if omitted)",
    )
    score_parser.add_argument(
        "--now",
        default=None,
        metavar="ISO8601",
        help="Evaluation time (overrides the document's 'now')",
    )

    tiers_parser = subparsers.add_parser("tiers", help="Show the tier table")
    tiers_parser.add_argument("--score", type=float, default=None, help="Resolve a single score")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Invalid input or configuration
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        try:
            config = load_engine_config()
        except ConfigError as e:
            _output_json(_make_error_result("INVALID_CONFIG", str(e)))
            return 2

        if args.command == "score":
            return cmd_score(args, config.policy)
        if args.command == "tiers":
            return cmd_tiers(args, config.policy)
        if args.command == "serve":
            return cmd_serve(args)

        return 0

    except Exception as e:
        # Unexpected errors exit 1
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
