"""XnScore API authentication and authorization.

API keys identify callers (X-XnScore-API-Key header). The key registry is
read from XNSCORE_API_KEYS_JSON:

    {"<key>": {"actor_id": "m-123", "name": "Ana", "roles": ["MEMBER"]}}

For MEMBER keys the actor_id is the member id. Fails closed on missing or
invalid credentials; unknown roles are rejected.
"""

import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel, ValidationError

from xnscore.api.errors import XnScoreHttpError
from xnscore.api.policy import ALL_ROLES, Role, policy_check
from xnscore.service import Actor

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-XnScore-API-Key"
XNSCORE_API_KEYS_ENV = "XNSCORE_API_KEYS_JSON"


class ActorContext(BaseModel):
    """Authenticated caller."""

    actor_id: str
    name: str
    roles: frozenset[str] = frozenset()
    request_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN.value in self.roles

    @property
    def primary_role(self) -> str:
        return sorted(self.roles)[0] if self.roles else ""

    def as_actor(self) -> Actor:
        """Audit identity for service calls."""
        return Actor(actor_id=self.actor_id, role=self.primary_role, request_id=self.request_id)


class ApiKeyRecord(BaseModel):
    """API key registry entry."""

    actor_id: str
    name: str
    roles: list[str] = []


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load the API key registry; empty on missing or malformed configuration."""
    raw = os.environ.get(XNSCORE_API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", XNSCORE_API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not a dict; treating as empty registry", XNSCORE_API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            continue

    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Compare against every key with hmac.compare_digest so timing leaks nothing."""
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def _normalize_roles(roles: list[str]) -> frozenset[str]:
    """Normalize roles, rejecting unknown ones.

    Raises:
        XnScoreHttpError: 401 if any role is unknown.
    """
    normalized: set[str] = set()
    for role in roles:
        upper_role = role.upper().strip()
        if upper_role not in ALL_ROLES:
            raise XnScoreHttpError(
                status_code=401,
                code="UNAUTHORIZED",
                message="Invalid credentials",
            )
        normalized.add(upper_role)
    return frozenset(normalized)


async def require_actor(request: Request) -> ActorContext:
    """FastAPI dependency that authenticates the caller by API key.

    Raises:
        XnScoreHttpError: 401 on any auth failure.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise XnScoreHttpError(status_code=401, code="UNAUTHORIZED", message="Missing API key")

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise XnScoreHttpError(status_code=401, code="UNAUTHORIZED", message="Invalid API key")

    actor = ActorContext(
        actor_id=record.actor_id,
        name=record.name,
        roles=_normalize_roles(record.roles),
        request_id=getattr(request.state, "request_id", None),
    )
    request.state.actor = actor
    return actor


RequireActor = Annotated[ActorContext, Depends(require_actor)]


def enforce_policy(actor: ActorContext, operation_id: str, member_id: str | None = None) -> None:
    """Apply policy_check for the operation.

    Raises:
        XnScoreHttpError: 403 when the policy denies the request.
    """
    decision = policy_check(
        actor_id=actor.actor_id,
        roles=actor.roles,
        operation_id=operation_id,
        member_id=member_id,
    )
    if not decision.allow:
        logger.info(
            "Policy denied request",
            extra={"actor_id": actor.actor_id, "operation_id": operation_id},
        )
        raise XnScoreHttpError(
            status_code=403,
            code=decision.code,
            message=decision.message,
            details=decision.details,
        )
