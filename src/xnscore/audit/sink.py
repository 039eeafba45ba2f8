"""Audit trail for trust-affecting actions.

Every state change that can move a member's score or money (event ingestion,
vouches, endorsements, advances, registrations) is recorded through an
AuditSink. Sinks are append-only and fail closed: an emission failure raises
AuditSinkError and the API turns it into a 500 response.

Serialization is deterministic: sorted keys, no extra whitespace.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "XNSCORE_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/xnscore_audit.jsonl"


class AuditSinkError(Exception):
    """Raised when an audit event cannot be recorded."""


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for audit events."""

    def emit(self, event: dict[str, Any]) -> None:
        """Record an audit event.

        Raises:
            AuditSinkError: If the event cannot be recorded.
        """
        ...


def build_audit_event(
    action: str,
    resource_type: str,
    resource_id: str,
    actor_id: str | None = None,
    actor_role: str | None = None,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> dict[str, Any]:
    """Assemble an audit event dict in the canonical shape."""
    when = occurred_at or datetime.now(UTC)
    return {
        "audit_event_id": str(uuid.uuid4()),
        "occurred_at": when.isoformat().replace("+00:00", "Z"),
        "action": action,
        "resource": {"type": resource_type, "id": resource_id},
        "actor": {"id": actor_id, "role": actor_role},
        "request_id": request_id,
        "details": details or {},
    }


class JsonlFileAuditSink:
    """Append-only JSONL file sink.

    The path comes from the constructor, then XNSCORE_AUDIT_LOG_PATH, then
    DEFAULT_AUDIT_LOG_PATH. Parent directories are created on first write.
    """

    def __init__(self, file_path: str | None = None) -> None:
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _ensure_parent_directory(self) -> None:
        parent = self._file_path.parent
        if not parent.exists():
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise AuditSinkError(f"Failed to create audit log directory {parent}: {e}") from e

    def emit(self, event: dict[str, Any]) -> None:
        """Append one JSON line for ``event``.

        Raises:
            AuditSinkError: If serialization or the file write fails.
        """
        try:
            line = json.dumps(event, sort_keys=True, separators=(",", ":")) + "\n"
        except (TypeError, ValueError) as e:
            raise AuditSinkError(f"Failed to serialize audit event: {e}") from e

        self._ensure_parent_directory()

        try:
            with self._lock, open(self._file_path, mode="a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise AuditSinkError(f"Failed to write audit event to {self._file_path}: {e}") from e


class InMemoryAuditSink:
    """In-memory sink for tests. Events are JSON round-tripped on emit."""

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        try:
            line = json.dumps(event, sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise AuditSinkError(f"Failed to serialize audit event: {e}") from e
        with self._lock:
            self._events.append(json.loads(line))

    @property
    def events(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._events)

    def actions(self) -> list[str]:
        return [e["action"] for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
