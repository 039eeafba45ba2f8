"""Error taxonomy for the XnScore engine.

Every error is scoped to a single request or member and is recoverable by
retry or by falling back to cached data. None of them is fatal to the process.
"""

from __future__ import annotations

from typing import Any


class XnScoreError(Exception):
    """Base exception for all XnScore engine errors."""


class ValidationError(XnScoreError):
    """Raised when a score event is malformed and must not be stored.

    Attributes:
        code: Machine-readable error code (e.g. "MAGNITUDE_OUT_OF_RANGE").
        message: Human-readable error message.
        details: Optional additional context.
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class StorageUnavailableError(XnScoreError):
    """Raised when a durable backend (database) cannot be reached."""


class EventStoreUnavailableError(StorageUnavailableError):
    """Raised when the event store backend cannot be reached."""


class StaleDataError(XnScoreError):
    """Raised when no score can be served: the store is down and nothing is cached."""

    def __init__(self, member_id: str, message: str | None = None) -> None:
        self.member_id = member_id
        super().__init__(message or f"No score available for member {member_id}")


class MemberNotFoundError(XnScoreError):
    """Raised when a member is not registered."""

    def __init__(self, member_id: str) -> None:
        self.member_id = member_id
        super().__init__(f"Member {member_id} not found")


class CircleNotFoundError(XnScoreError):
    """Raised when a circle is unknown to the circle directory."""

    def __init__(self, circle_id: str) -> None:
        self.circle_id = circle_id
        super().__init__(f"Circle {circle_id} not found")


class VouchError(XnScoreError):
    """Raised when a vouch operation is rejected. No state is changed.

    Attributes:
        code: Machine-readable rejection code (e.g. "CONCURRENT_LIMIT_REACHED").
        message: Human-readable rejection reason.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class VouchNotFoundError(XnScoreError):
    """Raised when a vouch id is unknown."""

    def __init__(self, vouch_id: str) -> None:
        self.vouch_id = vouch_id
        super().__init__(f"Vouch {vouch_id} not found")


class EndorsementError(XnScoreError):
    """Raised when an endorsement is rejected at write time."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class EligibilityDeniedError(XnScoreError):
    """Raised when a gated action is attempted without eligibility.

    Attributes:
        reasons: Failing eligibility reason codes.
    """

    def __init__(self, action: str, reasons: list[str]) -> None:
        self.action = action
        self.reasons = reasons
        super().__init__(f"{action} denied: {', '.join(reasons)}")
